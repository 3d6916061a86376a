# src/infrastructure/http_transport.py
import os
from typing import Optional

import httpx
import structlog

from src.providers.base import OutboundRequest, TransportResponse
from src.services.errors import TransportError

logger = structlog.get_logger(__name__)

OAUTH_HTTP_TIMEOUT = float(os.getenv("OAUTH_HTTP_TIMEOUT", "10"))


class HttpxTransport:
    """
    Sends provider requests with httpx. Network failures and timeouts surface as
    TransportError; HTTP error statuses are returned so adapters can read the
    provider's error body.
    """

    def __init__(self, timeout: float = OAUTH_HTTP_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def send(self, request: OutboundRequest) -> TransportResponse:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    params=request.params or None,
                    data=request.data,
                )
            except httpx.TimeoutException as e:
                logger.warning("provider_request_timeout", url=request.url, timeout=self.timeout)
                raise TransportError(f"timeout calling {request.url}") from e
            except httpx.HTTPError as e:
                logger.warning("provider_request_failed", url=request.url, error=type(e).__name__)
                raise TransportError(f"request to {request.url} failed") from e

        try:
            body = r.json()
        except ValueError as e:
            logger.warning("provider_response_not_json", url=request.url, status_code=r.status_code)
            raise TransportError(f"non-JSON response from {request.url}") from e

        if not isinstance(body, dict):
            raise TransportError(f"unexpected response shape from {request.url}")
        return TransportResponse(status_code=r.status_code, body=body)
