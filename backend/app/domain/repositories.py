from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from ..models import Draft, PaymentIntent, PaymentKind, PaymentMethod


class PaymentIntentRepository(Protocol):
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
    ) -> PaymentIntent: ...

    async def get_by_reference(self, reference: str) -> PaymentIntent | None: ...

    async def get_by_reference_for_update(self, reference: str) -> PaymentIntent | None: ...

    async def save(self, intent: PaymentIntent) -> PaymentIntent: ...


class DraftRepository(Protocol):
    async def get(self, user_id: int, namespace: str) -> Draft | None: ...

    async def upsert(
        self,
        user_id: int,
        namespace: str,
        payload: dict[str, Any],
        expires_at: datetime,
    ) -> Draft: ...

    async def delete(self, user_id: int, namespace: str) -> bool: ...
