from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import DraftRepository, PaymentIntentRepository
from ..models import Draft, PaymentIntent, PaymentKind, PaymentMethod, PaymentStatus
from ..utils.time import utc_now_naive


class SqlAlchemyPaymentIntentRepository(PaymentIntentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        reference: str,
        kind: PaymentKind,
        subject_id: str,
        user_id: int,
        method: PaymentMethod,
        subtotal: Decimal,
        discount_amount: Decimal,
        fee: Decimal,
        total: Decimal,
    ) -> PaymentIntent:
        now = utc_now_naive()
        intent = PaymentIntent(
            reference=reference,
            kind=kind,
            subject_id=subject_id,
            user_id=user_id,
            method=method,
            subtotal=subtotal,
            discount_amount=discount_amount,
            fee=fee,
            total=total,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(intent)
        await self.session.flush()
        return intent

    async def get_by_reference(self, reference: str) -> PaymentIntent | None:
        result = await self.session.scalar(select(PaymentIntent).where(PaymentIntent.reference == reference))
        return result if isinstance(result, PaymentIntent) else None

    async def get_by_reference_for_update(self, reference: str) -> PaymentIntent | None:
        result = await self.session.scalar(
            select(PaymentIntent).where(PaymentIntent.reference == reference).with_for_update()
        )
        return result if isinstance(result, PaymentIntent) else None

    async def save(self, intent: PaymentIntent) -> PaymentIntent:
        intent.updated_at = utc_now_naive()
        self.session.add(intent)
        await self.session.flush()
        return intent


class SqlAlchemyDraftRepository(DraftRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int, namespace: str) -> Draft | None:
        result = await self.session.scalar(
            select(Draft).where(Draft.user_id == user_id, Draft.namespace == namespace)
        )
        return result if isinstance(result, Draft) else None

    async def upsert(
        self,
        user_id: int,
        namespace: str,
        payload: dict[str, Any],
        expires_at: datetime,
    ) -> Draft:
        now = utc_now_naive()
        draft = await self.get(user_id, namespace)
        if draft is None:
            draft = Draft(user_id=user_id, namespace=namespace, payload=payload, expires_at=expires_at, updated_at=now)
        else:
            draft.payload = payload
            draft.expires_at = expires_at
            draft.updated_at = now
        self.session.add(draft)
        await self.session.flush()
        return draft

    async def delete(self, user_id: int, namespace: str) -> bool:
        result = await self.session.execute(
            delete(Draft).where(Draft.user_id == user_id, Draft.namespace == namespace)
        )
        return bool(getattr(result, "rowcount", 0))
