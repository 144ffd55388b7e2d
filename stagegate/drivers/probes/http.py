"""HTTP readiness probe using httpx.AsyncClient."""

from __future__ import annotations

from collections.abc import Mapping

import httpx

from stagegate.kernel.logging import get_logger

logger = get_logger(__name__)


class HttpProbe:
    """Ready when a request to *url* answers with an expected status.

    Parameters
    ----------
    url : str
        Endpoint to poll, e.g. ``http://localhost:8080/healthz``
    method : str
        HTTP method (default: GET)
    expected_status : tuple[int, ...] | None
        Accepted status codes; any 2xx when omitted
    headers : Mapping[str, str] | None
        Extra request headers
    timeout : float
        Transport timeout; the health gate bounds the attempt independently
    verify : bool
        Verify TLS certificates
    transport : httpx.AsyncBaseTransport | None
        Custom transport (tests inject one)

    Examples
    --------
        probe = HttpProbe("http://localhost:8080/healthz", expected_status=(200, 204))
        ready = await probe()
    """

    def __init__(
        self,
        url: str,
        method: str = "GET",
        expected_status: tuple[int, ...] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 5.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.method = method.upper()
        self.expected_status = tuple(expected_status) if expected_status else None
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

    def _accepts(self, status_code: int) -> bool:
        if self.expected_status is None:
            return 200 <= status_code < 300
        return status_code in self.expected_status

    async def __call__(self) -> bool:
        async with httpx.AsyncClient(
            timeout=self.timeout, verify=self.verify, transport=self.transport
        ) as client:
            try:
                response = await client.request(self.method, self.url, headers=self.headers)
            except httpx.TransportError as e:
                logger.debug("HTTP probe {url} unreachable: {error}", url=self.url, error=e)
                return False
        return self._accepts(response.status_code)

    def __repr__(self) -> str:
        return f"HttpProbe({self.method} {self.url})"
