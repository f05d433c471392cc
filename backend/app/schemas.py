from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from .domain.clients import BookingSnapshot
from .domain.discounts import Notice
from .domain.ledger import RefundTransaction, StoreCredit
from .domain.pricing import Invoice
from .models import (
    CreditStatus,
    DraftNamespace,
    MemberRole,
    PaymentIntent,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)
from .usecases.bookings import BookingRequest
from .usecases.checkout import Checkout, Payer
from .usecases.packages import PackageRequest
from .utils.time import SGT, utc_naive_to_local


def _require_tz(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("datetime must include a timezone offset")
    return value


class NoticeRead(BaseModel):
    source: str
    message: str

    @classmethod
    def from_notice(cls, notice: Notice) -> "NoticeRead":
        return cls(source=notice.source, message=notice.message)


class InvoiceRead(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    credit_applied: Decimal
    amount_due: Decimal
    fee: Decimal
    total: Decimal
    discount_source: Optional[str]
    skip_payment: bool
    notices: List[NoticeRead] = []

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceRead":
        return cls(
            subtotal=invoice.subtotal,
            discount_amount=invoice.discount_amount,
            credit_applied=invoice.credit_applied,
            amount_due=invoice.amount_due,
            fee=invoice.fee,
            total=invoice.total,
            discount_source=invoice.discount_source,
            skip_payment=invoice.skip_payment,
            notices=[NoticeRead.from_notice(n) for n in invoice.notices],
        )


class BookingCreate(BaseModel):
    location: str = Field(min_length=1)
    start_at: datetime
    end_at: datetime
    seat_numbers: List[str] = Field(min_length=1)
    members: int = Field(default=0, ge=0)
    tutors: int = Field(default=0, ge=0)
    students: int = Field(default=0, ge=0)
    member_role: MemberRole = MemberRole.MEMBER
    payment_method: PaymentMethod = PaymentMethod.PAYNOW
    package_id: Optional[str] = None
    promo_codes: List[str] = []
    credit_id: Optional[str] = None
    special_requests: str = ""
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _check_tz(cls, value: datetime) -> datetime:
        return _require_tz(value)

    def to_request(self) -> BookingRequest:
        return BookingRequest(
            location=self.location,
            start_at=self.start_at,
            end_at=self.end_at,
            seat_numbers=frozenset(self.seat_numbers),
            headcount={
                MemberRole.MEMBER: self.members,
                MemberRole.TUTOR: self.tutors,
                MemberRole.STUDENT: self.students,
            },
            method=self.payment_method,
            member_role=self.member_role,
            package_id=self.package_id,
            promo_codes=tuple(self.promo_codes),
            credit_id=self.credit_id,
            special_requests=self.special_requests,
            payer=Payer(email=self.email, name=self.name),
        )


class BookingQuoteRead(BaseModel):
    location: str
    start_at: datetime
    end_at: datetime
    hours: Decimal
    invoice: InvoiceRead

    @field_serializer("start_at", "end_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(SGT).isoformat()


class CheckoutRead(BaseModel):
    subject_id: str
    reference: str
    status: PaymentStatus
    checkout_url: Optional[str]
    invoice: InvoiceRead

    @classmethod
    def from_checkout(cls, checkout: Checkout) -> "CheckoutRead":
        return cls(
            subject_id=checkout.subject_id,
            reference=checkout.reference,
            status=checkout.status,
            checkout_url=checkout.checkout_url,
            invoice=InvoiceRead.from_invoice(checkout.invoice),
        )


class BookingReschedule(BaseModel):
    start_at: datetime
    end_at: datetime
    seat_numbers: Optional[List[str]] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _check_tz(cls, value: datetime) -> datetime:
        return _require_tz(value)


class BookingExtend(BaseModel):
    new_end_at: datetime
    payment_method: PaymentMethod = PaymentMethod.PAYNOW
    credit_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("new_end_at")
    @classmethod
    def _check_tz(cls, value: datetime) -> datetime:
        return _require_tz(value)


class BookingRead(BaseModel):
    booking_id: str
    location: str
    start_at: datetime
    end_at: datetime
    seat_numbers: List[str]
    total_amount: Decimal
    confirmed: bool

    @field_serializer("start_at", "end_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(SGT).isoformat()

    @classmethod
    def from_snapshot(cls, booking: BookingSnapshot) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            location=booking.location,
            start_at=booking.start_at,
            end_at=booking.end_at,
            seat_numbers=sorted(booking.seat_numbers),
            total_amount=booking.total_amount,
            confirmed=booking.confirmed,
        )


class PackagePurchaseCreate(BaseModel):
    package_id: str
    quantity: int = Field(default=1, ge=1)
    payment_method: PaymentMethod = PaymentMethod.PAYNOW
    member_role: MemberRole = MemberRole.MEMBER
    promo_codes: List[str] = []
    email: Optional[str] = None
    name: Optional[str] = None

    def to_request(self) -> PackageRequest:
        return PackageRequest(
            package_id=self.package_id,
            quantity=self.quantity,
            method=self.payment_method,
            member_role=self.member_role,
            promo_codes=tuple(self.promo_codes),
            payer=Payer(email=self.email, name=self.name),
        )


class PackageQuoteRead(BaseModel):
    package_id: str
    name: str
    quantity: int
    invoice: InvoiceRead


class RefundCreate(BaseModel):
    booking_id: str
    reason: str = Field(min_length=1, max_length=500)


class RefundRead(BaseModel):
    refund_id: str
    booking_id: str
    status: RefundStatus
    refund_amount: Decimal
    credit_amount: Decimal
    credit_id: Optional[str]
    processed_at: Optional[datetime]

    @classmethod
    def from_refund(cls, refund: RefundTransaction) -> "RefundRead":
        return cls(
            refund_id=refund.id,
            booking_id=refund.booking_id,
            status=refund.status,
            refund_amount=refund.refund_amount,
            credit_amount=refund.credit_amount,
            credit_id=refund.credit_id,
            processed_at=refund.processed_at,
        )


class CreditRead(BaseModel):
    credit_id: str
    amount: Decimal
    balance: Decimal
    status: CreditStatus
    refunded_from_booking_id: str
    expires_at: datetime

    @field_serializer("expires_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(SGT).isoformat()

    @classmethod
    def from_credit(cls, credit: StoreCredit) -> "CreditRead":
        return cls(
            credit_id=credit.id,
            amount=credit.amount,
            balance=credit.balance,
            status=credit.status,
            refunded_from_booking_id=credit.refunded_from_booking_id,
            expires_at=credit.expires_at,
        )


class CreditSummaryRead(BaseModel):
    credits: List[CreditRead]
    total_available: Decimal


class PaymentRead(BaseModel):
    reference: str
    kind: PaymentKind
    subject_id: str
    status: PaymentStatus
    total: Decimal
    retryable: bool = False

    @classmethod
    def from_intent(cls, intent: PaymentIntent) -> "PaymentRead":
        return cls(
            reference=intent.reference,
            kind=intent.kind,
            subject_id=intent.subject_id,
            status=intent.status,
            total=intent.total,
            retryable=intent.status == PaymentStatus.FAILED,
        )


class DraftWrite(BaseModel):
    payload: dict[str, Any]


class DraftRead(BaseModel):
    namespace: DraftNamespace
    payload: Optional[dict[str, Any]]
    expires_at: Optional[datetime] = None

    @field_serializer("expires_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return utc_naive_to_local(dt).isoformat() if dt is not None else None


class WebhookAck(BaseModel):
    reference: str
    status: PaymentStatus
    retryable: bool = False
