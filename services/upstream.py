import asyncio
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector, ClientError
from aiohttp_socks import ProxyConnector

from config import (
    GLOBAL_PROXIES, TRANSPORT_ROUTES, get_proxy_for_url, get_ssl_setting_for_url,
    UPSTREAM_CONNECT_TIMEOUT, UPSTREAM_READ_TIMEOUT
)
from services.errors import UpstreamError, ProxyNetworkError

logger = logging.getLogger(__name__)

# Default User-Agent for all outgoing requests
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

DEFAULT_HEADERS = {
    'User-Agent': DEFAULT_USER_AGENT,
    'Accept': '*/*',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate',
    'Cache-Control': 'no-cache',
    'Pragma': 'no-cache',
}


def build_headers(override_headers: dict = None, range_header: str = None) -> dict:
    """Default browser-like headers, host overrides on top, Range passed through verbatim."""
    headers = dict(DEFAULT_HEADERS)
    for name, value in (override_headers or {}).items():
        # Replace case-insensitively so 'referer' and 'Referer' never both go out
        for existing in [k for k in headers if k.lower() == name.lower()]:
            del headers[existing]
        headers[name] = value
    if range_header:
        headers['Range'] = range_header
    return headers


def describe(url: str) -> str:
    """host + path of a URL, without the query string, for logs."""
    parsed = urlparse(url)
    return f"{parsed.hostname}{parsed.path}"


class UpstreamResponse:
    """Origin response handed to the relay. Valid only inside UpstreamFetcher.fetch()."""

    def __init__(self, resp: aiohttp.ClientResponse):
        self._resp = resp
        self.status = resp.status
        self.reason = resp.reason or ''
        self.headers = resp.headers
        self.url = str(resp.url)

    @property
    def content_type(self) -> str:
        return self.headers.get('Content-Type', '')

    @property
    def content_length(self):
        return self.headers.get('Content-Length')

    @property
    def content_range(self):
        return self.headers.get('Content-Range')

    @property
    def is_decoded(self) -> bool:
        """True when aiohttp decompressed the body, so Content-Length no longer matches."""
        encoding = self.headers.get('Content-Encoding', '').lower()
        return encoding not in ('', 'identity')

    async def text(self) -> str:
        # Playlists are UTF-8; a stray bad byte must not kill the whole manifest
        body = await self._resp.read()
        try:
            return body.decode(self._resp.charset or 'utf-8', errors='replace')
        except LookupError:
            return body.decode('utf-8', errors='replace')

    async def iter_chunks(self, chunk_size: int):
        async for chunk in self._resp.content.iter_chunked(chunk_size):
            yield chunk


class UpstreamFetcher:
    """Issues the outbound GET to the origin. No caching, no retries."""

    def __init__(self):
        # Shared session for direct connections
        self.session = None
        # Cache for proxy sessions (proxy_url -> session)
        self.proxy_sessions = {}

    def _timeout(self):
        # No total timeout: live segments may stream for a long time
        return ClientTimeout(total=None, connect=UPSTREAM_CONNECT_TIMEOUT, sock_read=UPSTREAM_READ_TIMEOUT)

    async def _get_session(self):
        if self.session is None or self.session.closed:
            connector = TCPConnector(
                limit=0,
                limit_per_host=0,
                keepalive_timeout=60,
                enable_cleanup_closed=True
            )
            self.session = ClientSession(timeout=self._timeout(), connector=connector)
        return self.session

    async def _get_proxy_session(self, url: str):
        """Get a session routed through the outbound proxy configured for the URL.

        Sessions are cached and reused per proxy. Falls back to the shared
        direct session when no proxy applies or the connector cannot be built.
        """
        proxy = get_proxy_for_url(url, TRANSPORT_ROUTES, GLOBAL_PROXIES)

        if proxy:
            cached_session = self.proxy_sessions.get(proxy)
            if cached_session is not None:
                if not cached_session.closed:
                    logger.debug(f"♻️ Reusing cached proxy session: {proxy}")
                    return cached_session
                del self.proxy_sessions[proxy]

            logger.info(f"🌍 Creating proxy session: {proxy}")
            try:
                connector = ProxyConnector.from_url(
                    proxy,
                    limit=0,
                    limit_per_host=0,
                    keepalive_timeout=60
                )
                session = ClientSession(timeout=self._timeout(), connector=connector)
                self.proxy_sessions[proxy] = session
                return session
            except (ValueError, TypeError) as e:
                logger.warning(f"⚠️ Failed to create proxy connector: {e}, falling back to direct")

        return await self._get_session()

    @asynccontextmanager
    async def fetch(self, url: str, override_headers: dict = None, range_header: str = None):
        """GETs ``url`` and yields an UpstreamResponse.

        Redirects are followed by aiohttp. Non-2xx raises UpstreamError,
        connection-level failures raise ProxyNetworkError. The connection is
        released when the context exits, including on cancellation.
        """
        headers = build_headers(override_headers, range_header)
        session = await self._get_proxy_session(url)
        disable_ssl = get_ssl_setting_for_url(url, TRANSPORT_ROUTES)

        logger.info(f"📡 [Upstream] GET {describe(url)}" + (f" [{range_header}]" if range_header else ""))

        try:
            resp = await session.get(url, headers=headers, allow_redirects=True, ssl=not disable_ssl)
        except (ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"⚠️ Connection to {describe(url)} failed: {type(e).__name__}")
            raise ProxyNetworkError("Internal proxy error")

        try:
            if not 200 <= resp.status < 300:
                logger.warning(f"⚠️ Upstream returned {resp.status} {resp.reason} for {describe(url)}")
                raise UpstreamError(resp.status, resp.reason or '')
            yield UpstreamResponse(resp)
        finally:
            resp.release()

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        for proxy_url, session in list(self.proxy_sessions.items()):
            if not session.closed:
                await session.close()
        self.proxy_sessions.clear()
