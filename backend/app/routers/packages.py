from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_backend, get_checkout_target, get_current_user_id, get_gateway, get_session
from ..domain.clients import BookingBackend, PaymentGateway
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyPaymentIntentRepository
from ..schemas import CheckoutRead, InvoiceRead, PackagePurchaseCreate, PackageQuoteRead
from ..usecases import packages as package_usecase
from ..usecases.checkout import CheckoutTarget
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now
from .errors import emit_or_500, http_error

router = APIRouter(prefix="/packages", tags=["packages"])


@router.post("/quote", response_model=PackageQuoteRead)
async def quote_package(
    payload: PackagePurchaseCreate,
    backend: BookingBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> PackageQuoteRead:
    try:
        quote = await package_usecase.quote_package(
            backend,
            payload.to_request(),
            user_id=user_id,
            now=utc_now(),
            default_outlet_fee=settings.outlet_fee,
        )
    except DomainError as exc:
        raise http_error(exc) from exc

    return PackageQuoteRead(
        package_id=quote.offer.id,
        name=quote.offer.name,
        quantity=payload.quantity,
        invoice=InvoiceRead.from_invoice(quote.invoice),
    )


@router.post("/purchase", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
async def purchase_package(
    payload: PackagePurchaseCreate,
    session: AsyncSession = Depends(get_session),
    backend: BookingBackend = Depends(get_backend),
    gateway: PaymentGateway = Depends(get_gateway),
    target: CheckoutTarget = Depends(get_checkout_target),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> CheckoutRead:
    intents = SqlAlchemyPaymentIntentRepository(session)
    async with session.begin():
        try:
            checkout = await package_usecase.purchase_package(
                backend,
                gateway,
                intents,
                payload.to_request(),
                user_id=user_id,
                now=utc_now(),
                default_outlet_fee=settings.outlet_fee,
                target=target,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    emit_or_500(
        emit_audit_log,
        action="package.purchased",
        initiator="user",
        subject_id=checkout.subject_id,
        user_id=user_id,
        reference=checkout.reference,
        amount=checkout.invoice.total,
        status_to=checkout.status,
        extra={"package_id": payload.package_id, "quantity": payload.quantity},
    )
    return CheckoutRead.from_checkout(checkout)
