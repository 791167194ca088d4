"""Read-only HTTP client for Stripe checkout sessions."""

import logging
from datetime import datetime
from typing import Any, AsyncIterator

import httpx

from entitlement_engine.common.exceptions import PaymentProviderError
from entitlement_engine.events.schemas import ExternalTransaction

logger = logging.getLogger(__name__)


class StripeGateway:
    """Lists and fetches completed checkout sessions from the Stripe API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 30.0,
        page_size: int = 100,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = max(1, min(page_size, 100))
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._http_client

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.api_key:
            raise PaymentProviderError("Stripe API key is not configured")

        client = self._get_http_client()
        try:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Stripe API error",
                extra={"path": path, "status_code": exc.response.status_code},
            )
            raise PaymentProviderError(
                f"Stripe returned {exc.response.status_code} for {path}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Stripe API unreachable", extra={"path": path, "error": str(exc)})
            raise PaymentProviderError(f"Stripe request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise PaymentProviderError(f"Stripe returned invalid JSON for {path}") from exc

    async def list_transactions(
        self, start: datetime, end: datetime,
    ) -> AsyncIterator[ExternalTransaction]:
        """Yield complete checkout sessions created in ``[start, end)``, newest first."""
        params: dict[str, Any] = {
            "created[gte]": int(start.timestamp()),
            "created[lt]": int(end.timestamp()),
            "limit": self.page_size,
            "status": "complete",
        }
        pages = 0
        while True:
            page = await self._get("/v1/checkout/sessions", params=params)
            pages += 1
            items = page.get("data") or []
            for obj in items:
                yield ExternalTransaction.from_checkout_session(obj)

            if not page.get("has_more") or not items:
                break
            params["starting_after"] = items[-1]["id"]

        logger.debug("Listed checkout sessions", extra={"pages": pages})

    async def get_transaction(self, transaction_id: str) -> ExternalTransaction:
        obj = await self._get(f"/v1/checkout/sessions/{transaction_id}")
        return ExternalTransaction.from_checkout_session(obj)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
