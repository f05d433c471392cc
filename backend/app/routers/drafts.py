from datetime import timedelta

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_current_user_id, get_session
from ..infrastructure.repositories import SqlAlchemyDraftRepository
from ..models import DraftNamespace
from ..schemas import DraftRead, DraftWrite
from ..usecases import drafts as draft_usecase
from ..utils.time import utc_now

router = APIRouter(prefix="/me/drafts", tags=["drafts"])


@router.get("/{namespace}", response_model=DraftRead)
async def get_draft(
    namespace: DraftNamespace,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> DraftRead:
    repo = SqlAlchemyDraftRepository(session)
    async with session.begin():
        payload = await draft_usecase.load_draft(repo, user_id=user_id, namespace=namespace, now=utc_now())
    return DraftRead(namespace=namespace, payload=payload)


@router.put("/{namespace}", response_model=DraftRead)
async def put_draft(
    namespace: DraftNamespace,
    body: DraftWrite,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> DraftRead:
    repo = SqlAlchemyDraftRepository(session)
    async with session.begin():
        expires_at = await draft_usecase.save_draft(
            repo,
            user_id=user_id,
            namespace=namespace,
            payload=body.payload,
            now=utc_now(),
            ttl=timedelta(hours=settings.draft_ttl_hours),
        )
    return DraftRead(namespace=namespace, payload=body.payload, expires_at=expires_at)


@router.delete("/{namespace}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_draft(
    namespace: DraftNamespace,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    repo = SqlAlchemyDraftRepository(session)
    async with session.begin():
        await draft_usecase.clear_draft(repo, user_id=user_id, namespace=namespace)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
