"""Outbound HTTP for ``http_request`` steps."""

import logging
import time
from typing import Optional

import httpx

from autoflow.exceptions import HttpActionError

logger = logging.getLogger(__name__)

DEFAULT_SIZE_LIMIT_BYTES = 5 * 1024 * 1024


class HttpClient:
    """Issues one request per call with a hard timeout and a response size cap.

    Transport failures (DNS, connect, timeout) surface as ``HttpActionError``
    with ``status_code=0``; HTTP error statuses are returned, not raised, so
    the step decides what counts as success.
    """

    def __init__(
        self,
        size_limit_bytes: int = DEFAULT_SIZE_LIMIT_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.size_limit_bytes = size_limit_bytes
        self._transport = transport

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Optional[str],
        timeout: float,
    ) -> tuple[int, bytes]:
        start = time.monotonic()
        content = b""
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                async with client.stream(
                    method.upper(),
                    url,
                    headers=headers,
                    content=body.encode("utf-8") if body is not None else None,
                ) as response:
                    async for chunk in response.aiter_bytes(8192):
                        content += chunk
                        if len(content) > self.size_limit_bytes:
                            raise HttpActionError(
                                f"Response from {url} exceeds {self.size_limit_bytes} bytes",
                                status_code=response.status_code,
                            )
        except httpx.TimeoutException as exc:
            raise HttpActionError(f"{method} {url} timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise HttpActionError(f"{method} {url} failed: {exc}") from exc

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info("%s %s -> %d (%d ms)", method.upper(), url, response.status_code, elapsed_ms)
        return response.status_code, content
