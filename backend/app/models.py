from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, String


class Base(DeclarativeBase):
    pass


class MemberRole(StrEnum):
    STUDENT = "STUDENT"
    MEMBER = "MEMBER"
    TUTOR = "TUTOR"


class PaymentMethod(StrEnum):
    PAYNOW = "paynow"
    CARD = "card"


class PackageType(StrEnum):
    HALF_DAY = "HALF_DAY"
    FULL_DAY = "FULL_DAY"
    SEMESTER_BUNDLE = "SEMESTER_BUNDLE"


class PromoType(StrEnum):
    GENERAL = "GENERAL"
    GROUP_SPECIFIC = "GROUP_SPECIFIC"
    USER_SPECIFIC = "USER_SPECIFIC"
    WELCOME = "WELCOME"


class DiscountShape(StrEnum):
    PERCENTAGE = "percentage"
    FLAT = "fixed"


class CreditStatus(StrEnum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"


class RefundStatus(StrEnum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentKind(StrEnum):
    BOOKING = "booking"
    EXTENSION = "extension"
    PACKAGE = "package"


class DraftNamespace(StrEnum):
    BOOKING = "booking"
    PACKAGE = "package"
    DISCOUNT = "discount"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _enum_column(enum_cls: type[StrEnum], default: StrEnum) -> Any:
    return mapped_column(
        Enum(
            enum_cls,
            values_callable=lambda cls: [e.value for e in cls],
            native_enum=False,
        ),
        nullable=False,
        default=default,
    )


class PaymentIntent(Base):
    """Outbound payment awaiting gateway confirmation.

    The reference is what the gateway echoes back on redirect and webhook, so
    it is the idempotency key for reconciliation.
    """

    __tablename__ = "payment_intents"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_payment_intents_reference"),
        CheckConstraint("total >= 0", name="chk_payment_intents_total"),
        Index("idx_payment_intents_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[PaymentKind] = _enum_column(PaymentKind, PaymentKind.BOOKING)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    method: Mapped[PaymentMethod] = _enum_column(PaymentMethod, PaymentMethod.PAYNOW)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[PaymentStatus] = _enum_column(PaymentStatus, PaymentStatus.PENDING)
    checkout_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class Draft(Base):
    __tablename__ = "drafts"
    __table_args__ = (UniqueConstraint("user_id", "namespace", name="uq_drafts_user_namespace"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    namespace: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
