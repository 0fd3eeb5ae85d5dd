# gateway/client.py
# ============================================================================
# RECONCILIATION SERVICE: RAZORPAY REST CLIENT
# ============================================================================
# Purpose: Thin async wrapper over the three gateway endpoints we use
#
# FAILURE HANDLING:
# - Every call carries the configured timeout; expiry -> GatewayTimeoutError
# - Transport failures and non-2xx responses -> GatewayError
# - No retries here: the outside trigger is the only retry driver
# ============================================================================

import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import structlog

from config import AppConfig, GatewayCredentials
from errors import GatewayError, GatewayTimeoutError

logger = structlog.get_logger().bind(component="gateway_client")


def _error_description(response: httpx.Response) -> Optional[str]:
    """Razorpay errors look like {"error": {"code": ..., "description": ...}}"""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("description")
    return None


class RazorpayClient:
    """
    Request-scoped gateway client. Use as an async context manager so the
    connection pool is closed when the request ends.
    """

    def __init__(
        self,
        credentials: GatewayCredentials,
        config: Optional[AppConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AppConfig.from_env()
        self.mode = credentials.mode
        self._client = httpx.AsyncClient(
            base_url=self.config.gateway_api_url,
            auth=(credentials.key_id, credentials.key_secret),
            timeout=self.config.gateway_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "RazorpayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        await self._client.aclose()

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def create_order(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/orders", json=body)

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{quote(order_id, safe='')}")

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{quote(payment_id, safe='')}")

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        start = time.perf_counter()
        log = logger.bind(method=method, path=path, mode=self.mode.value)

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            log.warning("gateway_timeout", timeout_s=self.config.gateway_timeout_seconds)
            raise GatewayTimeoutError("Request timeout: Razorpay API took too long") from e
        except httpx.HTTPError as e:
            log.warning("gateway_transport_error", error=str(e))
            raise GatewayError(f"Razorpay request failed: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000

        if response.is_error:
            description = _error_description(response)
            log.error("gateway_error_response",
                      status=response.status_code,
                      description=description,
                      duration_ms=round(duration_ms, 1))
            raise GatewayError(
                f"Razorpay API error: {response.status_code} - {description or response.text}",
                http_status=response.status_code,
                description=description,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                "Razorpay returned a non-JSON response",
                http_status=response.status_code,
            ) from e

        log.info("gateway_response", status=response.status_code, duration_ms=round(duration_ms, 1))
        return body
