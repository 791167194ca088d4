"""Dependency injection singletons for Entitlement-Engine."""

from entitlement_engine.common.config import get_settings
from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.payments.gateway import StripeGateway
from entitlement_engine.provisioning.service import ProvisioningService
from entitlement_engine.reconciliation.scanner import ReconciliationScanner
from entitlement_engine.tenants.service import TenantService
from entitlement_engine.webhooks.service import WebhookLogService

_db: DatabaseManager | None = None
_provisioning: ProvisioningService | None = None
_gateway: StripeGateway | None = None
_scanner: ReconciliationScanner | None = None
_tenants: TenantService | None = None
_webhook_logs: WebhookLogService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_tenant_service() -> TenantService:
    global _tenants
    if _tenants is None:
        _tenants = TenantService()
    return _tenants


def get_provisioning_service() -> ProvisioningService:
    global _provisioning
    if _provisioning is None:
        _provisioning = ProvisioningService(
            get_settings(),
            tenants=get_tenant_service(),
        )
    return _provisioning


def get_gateway() -> StripeGateway:
    global _gateway
    if _gateway is None:
        settings = get_settings()
        _gateway = StripeGateway(
            api_key=settings.stripe_api_key,
            base_url=settings.stripe_api_base,
            timeout=settings.stripe_timeout,
            page_size=settings.reconcile_page_size,
        )
    return _gateway


def get_scanner() -> ReconciliationScanner:
    global _scanner
    if _scanner is None:
        _scanner = ReconciliationScanner(
            get_settings(),
            gateway=get_gateway(),
            provisioning=get_provisioning_service(),
            db=get_db(),
        )
    return _scanner


def get_webhook_log_service() -> WebhookLogService:
    global _webhook_logs
    if _webhook_logs is None:
        _webhook_logs = WebhookLogService()
    return _webhook_logs


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _provisioning, _gateway, _scanner, _tenants, _webhook_logs
    _db = None
    _provisioning = None
    _gateway = None
    _scanner = None
    _tenants = None
    _webhook_logs = None
