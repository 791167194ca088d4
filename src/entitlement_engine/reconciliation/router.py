"""Reconciliation API router — manual scans and single-transaction replay."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException

from entitlement_engine.common.exceptions import EngineError, PaymentProviderError
from entitlement_engine.common.security import require_api_key
from entitlement_engine.entitlements.writer import ProvisioningOrigin
from entitlement_engine.provisioning.schemas import ProvisioningResult, ProvisioningStatus
from entitlement_engine.reconciliation.schemas import ReconcileRequest, ReconciliationReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


def _get_scanner():
    from entitlement_engine.deps import get_scanner
    return get_scanner()


def _get_gateway():
    from entitlement_engine.deps import get_gateway
    return get_gateway()


def _get_service():
    from entitlement_engine.deps import get_provisioning_service
    return get_provisioning_service()


def _get_db():
    from entitlement_engine.deps import get_db
    return get_db()


def _provider_http_error(e: PaymentProviderError) -> HTTPException:
    if e.status_code == 404:
        return HTTPException(status_code=404, detail="Transaction not found at payment provider")
    return HTTPException(status_code=502, detail=e.message)


@router.post("/run", response_model=ReconciliationReport)
async def run_reconciliation(
    body: ReconcileRequest | None = None,
    _=Depends(require_api_key),
):
    body = body or ReconcileRequest()
    scanner = _get_scanner()

    start = body.start
    end = body.end
    if start is None and body.days is not None:
        end = end or datetime.now(timezone.utc)
        start = end - timedelta(days=body.days)

    try:
        return await scanner.scan(
            start,
            end,
            user_external_id=body.user_external_id,
            tenant_id=body.tenant_id,
            dry_run=body.dry_run,
        )
    except PaymentProviderError as e:
        raise _provider_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/transactions/{transaction_id}", response_model=ProvisioningResult)
async def replay_transaction(
    transaction_id: str,
    _=Depends(require_api_key),
):
    """Fetch one checkout session from Stripe and provision it if needed."""
    gateway = _get_gateway()
    svc = _get_service()

    try:
        transaction = await gateway.get_transaction(transaction_id)
    except PaymentProviderError as e:
        raise _provider_http_error(e)

    reason = svc.ineligibility_reason(transaction)
    if reason is not None:
        return ProvisioningResult(
            status=ProvisioningStatus.IGNORED,
            transaction_id=transaction.id,
            error=reason,
        )

    try:
        return await svc.run(_get_db(), transaction, ProvisioningOrigin.REPLAY)
    except EngineError as e:
        if e.retryable:
            raise HTTPException(status_code=503, detail=e.message)
        logger.warning(
            "Replay rejected",
            extra={"transaction_id": transaction.id, "code": e.code, "error": e.message},
        )
        raise HTTPException(
            status_code=422,
            detail={"code": e.code, "field": getattr(e, "field", None), "message": e.message},
        )
