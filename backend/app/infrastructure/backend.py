from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

import httpx

from ..domain.clients import (
    BookingBackend,
    BookingRef,
    BookingSnapshot,
    PackageOffer,
    PromoEligibility,
    PromoWallet,
)
from ..domain.discounts import DEFAULT_HOUR_LIMITS, PackagePass, PromoCode
from ..domain.errors import BackendError, SeatConflictError
from ..domain.fees import FeeSettings
from ..domain.ledger import RefundTransaction, StoreCredit
from ..domain.pricing import RateCard
from ..models import (
    CreditStatus,
    DiscountShape,
    MemberRole,
    PackageType,
    PromoType,
    RefundStatus,
)

logger = logging.getLogger(__name__)


def parse_instant(value: Any) -> datetime:
    """Backend timestamps are UTC; some come without an offset."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace(" ", "T")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_instant(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _money(value: Any, default: str = "0") -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal(default)


def _first(row: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return default


def parse_package(row: Mapping[str, Any], owner_id: int) -> PackagePass:
    package_type = PackageType(str(_first(row, "packageType", "package_type")).upper())
    hours = _first(row, "hoursAllowed", "hourLimitPerUse")
    role = _first(row, "targetRole", "target_role")
    return PackagePass(
        id=str(row["id"]),
        owner_id=int(_first(row, "userId", "userid", default=owner_id)),
        package_type=package_type,
        total_count=int(_first(row, "totalCount", default=0)),
        remaining_count=int(_first(row, "remainingCount", default=0)),
        hour_limit_per_use=_money(hours) if hours is not None else DEFAULT_HOUR_LIMITS[package_type],
        expires_at=parse_instant(row["expiresAt"]),
        target_role=MemberRole(str(role).upper()) if role else None,
        name=str(_first(row, "packageName", "name", default="")),
    )


def parse_promo(row: Mapping[str, Any]) -> PromoCode:
    active_from = _first(row, "activefrom", "activeFrom")
    active_to = _first(row, "activeto", "activeTo")
    minimum = _first(row, "minimumamount", "minimumAmount")
    maximum = _first(row, "maximumdiscount", "maxDiscountAmount")
    max_total = _first(row, "maxtotalusage", "maxTotalUsage")
    return PromoCode(
        code=str(row["code"]),
        promo_type=PromoType(str(_first(row, "promoType", "category", default="GENERAL")).upper()),
        discount_shape=DiscountShape(str(_first(row, "discounttype", "discountType", default="percentage"))),
        discount_value=_money(_first(row, "discountvalue", "discountValue")),
        max_usage_per_user=int(_first(row, "maxusageperuser", "maxUsagePerUser", default=1)),
        priority=int(_first(row, "priority", default=0)),
        minimum_amount=_money(minimum) if minimum is not None else None,
        maximum_discount=_money(maximum) if maximum is not None else None,
        active_from=parse_instant(active_from) if active_from else None,
        active_to=parse_instant(active_to) if active_to else None,
        max_total_usage=int(max_total) if max_total else None,
        current_usage=int(_first(row, "currentusage", "currentUsage", default=0)),
        is_active=bool(_first(row, "isactive", "isActive", default=True)),
        groups=frozenset(MemberRole(str(g).upper()) for g in row.get("groups") or ()),
        user_ids=frozenset(int(u) for u in row.get("userIds") or ()),
    )


def parse_credit(row: Mapping[str, Any]) -> StoreCredit:
    issued_at = parse_instant(_first(row, "refundedat", "issuedat", "createdat"))
    return StoreCredit(
        id=str(_first(row, "id", "creditid")),
        owner_id=int(_first(row, "userid", "userId")),
        amount=_money(_first(row, "amount", "creditamount")),
        refunded_from_booking_id=str(_first(row, "refundedfrombookingid", "bookingid", default="")),
        issued_at=issued_at,
        expires_at=parse_instant(row["expiresat"]),
        status=CreditStatus(str(_first(row, "status", default="ACTIVE")).upper()),
        used_amount=_money(_first(row, "usedamount", "usedAmount")),
    )


def parse_refund(row: Mapping[str, Any]) -> RefundTransaction:
    processed_at = row.get("processedat")
    credit_id = row.get("creditid")
    return RefundTransaction(
        id=str(row["id"]),
        booking_id=str(row["bookingid"]),
        owner_id=int(row["userid"]),
        refund_amount=_money(row.get("refundamount")),
        reason=str(row.get("refundreason") or ""),
        requested_at=parse_instant(row["requestedat"]),
        status=RefundStatus(str(row.get("refundstatus", "REQUESTED")).upper()),
        credit_amount=_money(row.get("creditamount")),
        processed_at=parse_instant(processed_at) if processed_at else None,
        credit_id=str(credit_id) if credit_id else None,
    )


def parse_booking(row: Mapping[str, Any]) -> BookingSnapshot:
    headcount = {
        MemberRole.MEMBER: int(row.get("members") or 0),
        MemberRole.TUTOR: int(row.get("tutors") or 0),
        MemberRole.STUDENT: int(row.get("students") or 0),
    }
    return BookingSnapshot(
        id=str(row["id"]),
        user_id=int(_first(row, "userId", "userid")),
        location=str(row["location"]),
        start_at=parse_instant(row["startAt"]),
        end_at=parse_instant(row["endAt"]),
        seat_numbers=frozenset(str(s) for s in row.get("seatNumbers") or ()),
        headcount=headcount,
        total_amount=_money(row.get("totalAmount")),
        confirmed=bool(row.get("confirmedPayment", False)),
    )


def _pricing_rows(data: Any) -> list[Mapping[str, Any]]:
    if isinstance(data, list):
        return data
    # {student: {oneHourRate, overOneHourRate}, member: {...}, tutor: {...}}
    return [{"memberType": role, **rates} for role, rates in (data or {}).items()]


class HttpBookingBackend(BookingBackend):
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except httpx.HTTPError as exc:
            logger.warning("backend %s %s failed: %s", method, path, exc)
            raise BackendError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise BackendError(
                f"{method} {path} returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{method} {path} returned invalid JSON") from exc

    async def booked_seats(self, location: str, start_at: datetime, end_at: datetime) -> frozenset[str]:
        body = await self._request(
            "POST",
            "/booking/getBookedSeats",
            json={"location": location, "startAt": format_instant(start_at), "endAt": format_instant(end_at)},
        )
        return frozenset(str(seat) for seat in body.get("bookedSeats") or ())

    async def reschedule_occupied_seats(self, booking_id: str, start_at: datetime, end_at: datetime) -> frozenset[str]:
        """Seats held by other bookings in the window; the moved booking does not count."""
        body = await self._request(
            "GET",
            f"/api/reschedule/booking/{booking_id}/available-seats",
            params={"startAt": format_instant(start_at), "endAt": format_instant(end_at)},
        )
        return frozenset(str(seat) for seat in body.get("occupiedSeats") or ())

    async def location_pricing(self, location: str) -> RateCard:
        body = await self._request("GET", f"/pricing/{location}")
        return RateCard.from_backend(_pricing_rows(body.get("data")))

    async def create_booking(self, payload: dict[str, Any]) -> BookingRef:
        body = await self._request("POST", "/booking/create", json=payload)
        booking = body.get("booking", body)
        return BookingRef(booking_id=str(booking["id"]), booking_ref=str(booking.get("bookingRef", "")))

    async def booking(self, booking_id: str) -> BookingSnapshot:
        body = await self._request("GET", f"/api/booking/{booking_id}")
        return parse_booking(body.get("booking", body))

    async def confirm_booking(self, booking_id: str, reference: str) -> None:
        await self._request("POST", "/booking/confirmBooking", json={"bookingId": booking_id, "reference": reference})

    async def confirm_extension(self, booking_id: str, reference: str) -> None:
        await self._request(
            "POST",
            "/booking/confirmExtensionPayment",
            json={"bookingId": booking_id, "reference": reference},
        )

    async def reschedule_booking(
        self,
        booking_id: str,
        start_at: datetime,
        end_at: datetime,
        seat_numbers: Sequence[str],
    ) -> BookingSnapshot:
        try:
            body = await self._request(
                "PUT",
                f"/api/reschedule/booking/{booking_id}",
                json={
                    "startAt": format_instant(start_at),
                    "endAt": format_instant(end_at),
                    "seatNumbers": list(seat_numbers),
                },
            )
        except BackendError as exc:
            if exc.status_code == 409:
                raise SeatConflictError("seat_taken") from exc
            raise
        if body.get("conflictingSeats"):
            raise SeatConflictError("seat_taken", body["conflictingSeats"])
        return parse_booking(body["booking"])

    async def extend_booking(self, booking_id: str, payload: dict[str, Any]) -> None:
        await self._request("POST", "/booking/extend", json={"bookingId": booking_id, **payload})

    async def user_booking_count(self, user_id: int) -> int:
        body = await self._request("GET", "/booking/userStats", params={"userId": user_id})
        return int(body.get("totalBookings") or 0)

    async def user_packages(self, user_id: int, role: MemberRole) -> list[PackagePass]:
        body = await self._request("GET", f"/user-packages/{user_id}", params={"role": role.value})
        return [parse_package(row, user_id) for row in body.get("packages") or ()]

    async def package_offer(self, package_id: str) -> PackageOffer:
        body = await self._request("GET", f"/packages/{package_id}")
        row = body.get("package", body)
        outlet_fee = row.get("outletFee")
        return PackageOffer(
            id=str(row["id"]),
            name=str(row.get("name", "")),
            package_type=PackageType(str(row["packageType"]).upper()),
            price=_money(row["price"]),
            outlet_fee=_money(outlet_fee) if outlet_fee is not None else None,
        )

    async def purchase_package(self, payload: dict[str, Any]) -> str:
        body = await self._request("POST", "/packages/purchase", json=payload)
        return str(body["userPackageId"])

    async def confirm_package(self, purchase_id: str, reference: str) -> None:
        await self._request(
            "POST",
            "/packages/confirm",
            json={"userPackageId": purchase_id, "hitpayReference": reference, "paymentStatus": "completed"},
        )

    async def check_promo_eligibility(self, code: str, user_id: int, amount: Decimal) -> PromoEligibility:
        body = await self._request(
            "POST",
            "/promocode/validate",
            json={"promoCode": code, "userId": user_id, "bookingAmount": str(amount)},
        )
        promo = body.get("promoCode")
        return PromoEligibility(
            eligible=bool(body.get("eligible")),
            reason=str(body.get("reason") or ""),
            promo=parse_promo(promo) if promo else None,
            usage_count=int(body.get("usageCount") or 0),
        )

    async def user_promos(self, user_id: int) -> PromoWallet:
        body = await self._request("GET", f"/promocode/user/{user_id}")
        rows = body.get("promoCodes") or ()
        usage = {str(row["code"]): int(row.get("usageCount") or 0) for row in rows}
        return PromoWallet(promos=tuple(parse_promo(row) for row in rows), usage=usage)

    async def user_credits(self, user_id: int) -> list[StoreCredit]:
        body = await self._request("GET", "/api/refund/credits", params={"userid": user_id})
        return [parse_credit(row) for row in body.get("credits") or ()]

    async def user_refunds(self, user_id: int) -> list[RefundTransaction]:
        body = await self._request("GET", "/api/refund/requests", params={"userid": user_id})
        rows = body if isinstance(body, list) else body.get("refunds") or ()
        return [parse_refund(row) for row in rows]

    async def request_refund(self, booking_id: str, reason: str, user_id: int) -> RefundTransaction:
        body = await self._request(
            "POST",
            "/api/refund/request",
            json={"bookingid": booking_id, "reason": reason, "userid": user_id},
        )
        return parse_refund(body.get("refund", body))

    async def approve_refund(self, refund_id: str) -> StoreCredit:
        body = await self._request("POST", f"/api/admin/refund/refunds/{refund_id}/approve", json={})
        return parse_credit(body.get("credit", body))

    async def reject_refund(self, refund_id: str) -> RefundTransaction:
        body = await self._request("POST", f"/api/admin/refund/refunds/{refund_id}/reject", json={})
        return parse_refund(body.get("refund", body))

    async def payment_fee_settings(self) -> FeeSettings:
        body = await self._request("GET", "/payment-settings")
        return FeeSettings.from_backend(body)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)
