"""
Async HTTP delivery of signed requests.

Kept apart from the signer: a transport only sees a ``SignedRequest`` and
reports a ``TransportResult``. Nothing here retries; a retry needs a freshly
signed request because AWS rejects stale ``X-Amz-Date`` values.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from .errors import RemoteRejection, TransportError
from .sigv4 import Headers, Params, SignedRequest, SigV4Signer

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class TransportResult:
    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def raise_for_status(self) -> 'TransportResult':
        if not self.ok:
            raise RemoteRejection(self.status_code, self.body)
        return self


class AsyncTransport:
    """Sends signed requests with an ``httpx.AsyncClient``.

    A client passed in is left open on :meth:`aclose`; one created here is
    closed with the transport.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> 'AsyncTransport':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, signed: SignedRequest) -> TransportResult:
        logger.debug('Sending %s %s', signed.method, signed.url)
        try:
            response = await self._client.request(
                signed.method,
                signed.url,
                headers=dict(signed.headers),
                content=signed.body or None,
            )
        except httpx.HTTPError as e:
            raise TransportError(f'{signed.method} {signed.url} failed: {e}') from e

        result = TransportResult(response.status_code, response.text)
        if result.ok:
            logger.info('%s %s -> %d', signed.method, signed.url, result.status_code)
        else:
            logger.warning('%s %s -> %d', signed.method, signed.url, result.status_code)
        return result


async def send_signed(
        signer: SigV4Signer,
        transport: AsyncTransport,
        method: str,
        url: str,
        params: Params = None,
        headers: Optional[Headers] = None,
        now: Optional[datetime] = None
) -> TransportResult:
    """Sign a request and send it once."""
    return await transport.send(signer.sign(method, url, params, headers, now))
