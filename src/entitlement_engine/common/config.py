"""Entitlement-Engine configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ENTITLEMENT_")

    environment: str = "development"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/entitlements.db"

    # API
    api_title: str = "Entitlement-Engine"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    # Stripe
    stripe_api_key: str = ""
    stripe_api_base: str = "https://api.stripe.com"
    stripe_timeout: float = 30.0  # seconds, per API call
    stripe_webhook_secret: str = ""
    stripe_webhook_secret_previous: str = ""

    # Per-environment webhook secrets: JSON dict mapping environment name to
    # a list of secrets, newest first.
    # e.g. '{"production": ["whsec_new", "whsec_old"], "staging": ["whsec_stg"]}'
    # When set and the current environment is present, the scalar secrets are ignored.
    stripe_webhook_secrets: str = ""
    webhook_tolerance: int = 300  # seconds; 0 disables the timestamp check

    # Provisioning
    provisionable_kinds: list[str] = ["pass_purchase"]
    provision_timeout: float = 30.0  # seconds, per provisioning attempt
    default_user_role: str = "student"
    default_user_name: str = "Customer"
    checkout_currency: str = "nok"

    # Reconciliation
    reconcile_window_days: int = 7
    reconcile_interval: int = 0  # seconds between scheduled scans; 0 disables
    reconcile_page_size: int = 100

    @property
    def webhook_secret_map(self) -> dict[str, list[str]]:
        """Parse stripe_webhook_secrets. Raises ValueError on malformed JSON or shape."""
        if not self.stripe_webhook_secrets:
            return {}
        example = "'{\"production\": [\"whsec_...\"]}'"
        try:
            raw = json.loads(self.stripe_webhook_secrets)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(
                f"ENTITLEMENT_STRIPE_WEBHOOK_SECRETS must be valid JSON (e.g. {example}), "
                f"got: {self.stripe_webhook_secrets!r}"
            ) from exc
        if not isinstance(raw, dict):
            raise ValueError(
                f"ENTITLEMENT_STRIPE_WEBHOOK_SECRETS must be a JSON object (e.g. {example})"
            )

        secret_map: dict[str, list[str]] = {}
        for env, secrets in raw.items():
            if isinstance(secrets, str):
                secrets = [secrets]
            if not isinstance(secrets, list) or not all(isinstance(s, str) for s in secrets):
                raise ValueError(
                    f"ENTITLEMENT_STRIPE_WEBHOOK_SECRETS['{env}'] must be a string or a list of strings"
                )
            secret_map[env] = secrets
        return secret_map

    @property
    def webhook_secret_ring(self) -> list[str]:
        """Return webhook secrets for the active environment, newest first.

        If stripe_webhook_secrets is set and names this environment, use it.
        Otherwise fall back to the current secret followed by the previous one.
        """
        secret_map = self.webhook_secret_map
        if self.environment in secret_map:
            return [s for s in secret_map[self.environment] if s]

        return [
            s for s in (self.stripe_webhook_secret, self.stripe_webhook_secret_previous) if s
        ]

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments.

        Raises ValueError for a malformed stripe_webhook_secrets.
        """
        self.webhook_secret_map

        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"ENTITLEMENT_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default admin key — set ENTITLEMENT_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )

        ring = self.webhook_secret_ring
        if not ring:
            warnings.warn(
                "No Stripe webhook secret configured — every webhook delivery will be rejected",
                UserWarning,
                stacklevel=2,
            )
        elif any(not s.startswith("whsec_") for s in ring):
            warnings.warn(
                "Stripe webhook secrets normally start with 'whsec_' — check the endpoint secret",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> EngineSettings:
    settings = EngineSettings()
    settings.validate_for_production()
    return settings
