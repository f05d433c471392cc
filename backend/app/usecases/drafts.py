from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from ..domain.repositories import DraftRepository
from ..models import DraftNamespace
from ..utils.time import to_utc_naive


async def load_draft(
    repo: DraftRepository,
    *,
    user_id: int,
    namespace: DraftNamespace,
    now: datetime,
) -> Optional[dict[str, Any]]:
    draft = await repo.get(user_id, namespace.value)
    if draft is None:
        return None
    if draft.expires_at <= to_utc_naive(now):
        await repo.delete(user_id, namespace.value)
        return None
    return draft.payload


async def save_draft(
    repo: DraftRepository,
    *,
    user_id: int,
    namespace: DraftNamespace,
    payload: dict[str, Any],
    now: datetime,
    ttl: timedelta,
) -> datetime:
    draft = await repo.upsert(user_id, namespace.value, payload, to_utc_naive(now + ttl))
    return draft.expires_at


async def clear_draft(repo: DraftRepository, *, user_id: int, namespace: DraftNamespace) -> bool:
    return await repo.delete(user_id, namespace.value)


async def clear_drafts(repo: DraftRepository, *, user_id: int, namespaces: Iterable[DraftNamespace]) -> None:
    for namespace in namespaces:
        await repo.delete(user_id, namespace.value)
