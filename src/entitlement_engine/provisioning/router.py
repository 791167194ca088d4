"""Provisioning endpoints — Stripe webhook and checkout session creation."""

import asyncio
import logging
import time

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from entitlement_engine.catalog.validation import validate_product
from entitlement_engine.common.config import get_settings
from entitlement_engine.common.exceptions import (
    AuthenticationError,
    EngineError,
    InvalidProductConfigurationError,
)
from entitlement_engine.common.security import require_api_key
from entitlement_engine.events.verifier import construct_event
from entitlement_engine.provisioning.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ProvisioningResult,
    ProvisioningStatus,
)
from entitlement_engine.webhooks.schemas import WebhookLogResponse
from entitlement_engine.webhooks.service import STATUS_UNAUTHENTICATED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["provisioning"])
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])

PASS_PURCHASE = "pass_purchase"


def _get_service():
    from entitlement_engine.deps import get_provisioning_service
    return get_provisioning_service()


def _get_log_service():
    from entitlement_engine.deps import get_webhook_log_service
    return get_webhook_log_service()


def _get_db():
    from entitlement_engine.deps import get_db
    return get_db()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@router.post("/stripe", response_model=ProvisioningResult)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
):
    """Handle Stripe checkout completion webhooks.

    Returns 400 when the delivery cannot be authenticated and 503 when the
    store fails transiently, so Stripe redelivers. Permanent catalog or
    metadata defects are acknowledged with status ``rejected``.
    """
    started = time.perf_counter()
    body = await request.body()
    settings = get_settings()
    db = _get_db()
    log_service = _get_log_service()
    sizes = {"body_length": len(body), "signature_length": len(stripe_signature)}

    try:
        secrets = settings.webhook_secret_ring
    except ValueError as e:
        logger.error("Webhook secrets misconfigured", extra={"error": str(e), **sizes})
        await log_service.record(
            db, ProvisioningStatus.FAILED.value, error=str(e),
            processing_time_ms=_elapsed_ms(started), **sizes,
        )
        raise HTTPException(status_code=500, detail="Webhook secrets misconfigured")

    try:
        event = construct_event(
            body,
            stripe_signature,
            secrets,
            tolerance=settings.webhook_tolerance,
        )
    except AuthenticationError as e:
        logger.warning("Rejected unauthenticated Stripe webhook", extra={"error": e.message, **sizes})
        await log_service.record(
            db, STATUS_UNAUTHENTICATED, error=e.message,
            processing_time_ms=_elapsed_ms(started), **sizes,
        )
        raise HTTPException(status_code=400, detail=e.message)

    transaction = event.transaction
    detail = {"livemode": event.livemode}
    if transaction is not None:
        detail["metadata"] = transaction.metadata.model_dump(by_alias=True, exclude_none=True)
        detail["payment_status"] = transaction.payment_status

    log_fields = {
        "event_id": event.id,
        "event_type": event.kind,
        "transaction_id": transaction.id if transaction else None,
        "detail": detail,
    }

    svc = _get_service()
    try:
        result = await svc.handle_event(db, event)
    except EngineError as e:
        if e.retryable:
            logger.error(
                "Transient failure provisioning webhook",
                extra={"event_id": event.id, "code": e.code, "error": e.message},
            )
            await log_service.record(
                db, ProvisioningStatus.FAILED.value, error=e.message,
                processing_time_ms=_elapsed_ms(started), **log_fields, **sizes,
            )
            raise HTTPException(status_code=503, detail=e.message)

        logger.error(
            "Rejected webhook with permanent provisioning defect",
            extra={
                "event_id": event.id,
                "transaction_id": log_fields["transaction_id"],
                "code": e.code,
                "field": getattr(e, "field", None),
                "error": e.message,
            },
        )
        result = ProvisioningResult(
            status=ProvisioningStatus.REJECTED,
            transaction_id=log_fields["transaction_id"],
            code=e.code,
            field=getattr(e, "field", None),
            error=e.message,
        )

    await log_service.record(
        db, result.status.value, error=result.error,
        processing_time_ms=_elapsed_ms(started), **log_fields, **sizes,
    )
    return result


@router.get("/logs", response_model=list[WebhookLogResponse])
async def list_webhook_logs(
    status: str | None = Query(None),
    transaction_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    log_service = _get_log_service()
    db = _get_db()
    async with db.get_session() as session:
        logs = await log_service.list_logs(
            session, status=status, transaction_id=transaction_id,
            limit=limit, offset=offset,
        )
        return [WebhookLogResponse.model_validate(entry) for entry in logs]


# ── Checkout session creation ──

@checkout_router.post("/passes", response_model=CheckoutResponse)
async def create_pass_checkout(body: CheckoutRequest):
    """Create a Stripe Checkout session carrying the provisioning metadata."""
    settings = get_settings()
    if not settings.stripe_api_key:
        raise HTTPException(status_code=503, detail="Stripe not configured")

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        product = await svc.products.get_product(session, body.pass_id)
        if product is None or not product.is_active:
            raise HTTPException(status_code=404, detail="Pass not found")
        try:
            validated = validate_product(product, now=svc.clock())
        except InvalidProductConfigurationError as e:
            logger.error(
                "Refusing checkout for misconfigured pass",
                extra={"product_id": product.id, "field": e.field},
            )
            raise HTTPException(status_code=422, detail=e.message)

    tenant_id = body.tenant_id or validated.tenant_id
    metadata = {
        "passId": validated.id,
        "type": PASS_PURCHASE,
        "userId": body.user_id,
    }
    if tenant_id:
        metadata["tenantId"] = tenant_id
    if body.user_email:
        metadata["userEmail"] = body.user_email

    stripe.api_key = settings.stripe_api_key

    try:
        # Blocking SDK call; run off the event loop and bound by stripe_timeout.
        session = await asyncio.wait_for(
            asyncio.to_thread(
                stripe.checkout.Session.create,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": settings.checkout_currency,
                        "unit_amount": validated.price,
                        "product_data": {"name": validated.name},
                    },
                    "quantity": 1,
                }],
                success_url=body.success_url,
                cancel_url=body.cancel_url,
                customer_email=body.user_email or None,
                metadata=metadata,
            ),
            timeout=settings.stripe_timeout,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Stripe session creation timed out",
            extra={"product_id": validated.id, "timeout": settings.stripe_timeout},
        )
        raise HTTPException(status_code=502, detail="Stripe session creation timed out")
    except stripe.StripeError as e:
        logger.error("Stripe session creation failed: %s", e)
        raise HTTPException(status_code=502, detail="Stripe session creation failed")

    logger.info(
        "Created checkout session",
        extra={"session_id": session.id, "product_id": validated.id, "user_external_id": body.user_id},
    )
    return CheckoutResponse(session_id=session.id, url=session.url)
