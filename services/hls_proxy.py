import asyncio
import logging

from aiohttp import web, ClientError

from config import GLOBAL_PROXIES, TRANSPORT_ROUTES, HOST_OVERRIDES, CHUNK_SIZE
from extractors.classifier import classify_request, ResourceKind
from services.errors import RelayError
from services.manifest_rewriter import ManifestRewriter, PROXY_PATH
from services.upstream import UpstreamFetcher, describe

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

MANIFEST_CONTENT_TYPE = 'application/vnd.apple.mpegurl'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Range',
    'Access-Control-Expose-Headers': 'Content-Length, Content-Range',
    'Access-Control-Max-Age': '86400',
}

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

FALLBACK_CONTENT_TYPES = {
    ResourceKind.MANIFEST: MANIFEST_CONTENT_TYPE,
    ResourceKind.SEGMENT: 'video/mp2t',
    ResourceKind.OPAQUE: 'application/octet-stream',
}


def error_response(message: str, status: int) -> web.Response:
    """JSON error body, always with the CORS headers attached."""
    return web.json_response({'error': message}, status=status, headers=CORS_HEADERS)


class HLSProxy:
    """Same-origin relay for HLS playlists and segments."""

    def __init__(self, fetcher=None):
        self.fetcher = fetcher or UpstreamFetcher()

    @staticmethod
    def _is_manifest(proxy_request, upstream) -> bool:
        content_type = upstream.content_type.lower()
        return 'mpegurl' in content_type or proxy_request.kind is ResourceKind.MANIFEST

    async def handle_proxy_request(self, request):
        """Handles GET/HEAD /api/proxy?url=<encoded URL>"""
        target = None
        try:
            proxy_request = classify_request(request.query.get('url'), request.headers.get('Range'))
            target = describe(proxy_request.target_url)

            logger.info(f"[PROXY] Fetching: {target}")

            async with self.fetcher.fetch(
                proxy_request.target_url,
                override_headers=proxy_request.override_headers,
                range_header=proxy_request.range_header
            ) as upstream:
                if self._is_manifest(proxy_request, upstream):
                    return await self._serve_manifest(upstream)
                return await self._stream_body(request, proxy_request, upstream)

        except RelayError as e:
            return error_response(e.message, e.status)

        except (ClientError, asyncio.TimeoutError) as e:
            # Upstream dropped while the playlist body was being read
            logger.warning(f"⚠️ Connection lost with source: {target} ({type(e).__name__})")
            return error_response("Internal proxy error", 500)

        except Exception as e:
            # Exception text may carry the full URL; log host and path only
            logger.error(f"❌ Generic error in stream proxy for {target}: {type(e).__name__}")
            return error_response("Internal proxy error", 500)

    async def _serve_manifest(self, upstream):
        manifest_content = await upstream.text()
        # Resolve against the playlist's final location, after redirects
        rewritten_manifest = ManifestRewriter.rewrite_manifest_urls(manifest_content, upstream.url)

        return web.Response(
            text=rewritten_manifest,
            status=200,
            headers={
                **CORS_HEADERS,
                **NO_CACHE_HEADERS,
                'Content-Type': MANIFEST_CONTENT_TYPE,
            }
        )

    async def _stream_body(self, request, proxy_request, upstream):
        """Streams a segment or any other binary body through unchanged."""
        response_headers = {
            **CORS_HEADERS,
            **NO_CACHE_HEADERS,
            'Content-Type': upstream.content_type or FALLBACK_CONTENT_TYPES[proxy_request.kind],
        }

        # A decompressed body no longer matches the origin's Content-Length
        if upstream.content_length and not upstream.is_decoded:
            response_headers['Content-Length'] = upstream.content_length
        if upstream.content_range:
            response_headers['Content-Range'] = upstream.content_range
            response_headers['Accept-Ranges'] = 'bytes'

        response = web.StreamResponse(status=upstream.status, headers=response_headers)
        await response.prepare(request)

        if request.method == 'HEAD':
            # Headers only; the unread upstream body is dropped on release
            await response.write_eof()
            return response

        try:
            async for chunk in upstream.iter_chunks(CHUNK_SIZE):
                if request.transport is None or request.transport.is_closing():
                    logger.debug(f"Client disconnected during stream of {describe(proxy_request.target_url)}")
                    return response
                await response.write(chunk)
            await response.write_eof()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.info(f"ℹ️ Client disconnected from stream: {describe(proxy_request.target_url)} ({e})")
        except (ClientError, asyncio.TimeoutError) as e:
            # Headers are already sent; close the connection so the short body shows up as truncated
            logger.warning(f"⚠️ Connection lost with source: {describe(proxy_request.target_url)} ({type(e).__name__})")
            response.force_close()

        return response

    async def handle_options(self, request):
        """Handles OPTIONS requests for CORS"""
        return web.Response(status=200, headers=CORS_HEADERS)

    async def handle_api_info(self, request):
        """API endpoint that returns server information in JSON format."""
        info = {
            "proxy": "Live TV Stream Relay",
            "version": VERSION,
            "status": "✅ Working",
            "features": [
                "✅ Proxy HLS playlists and segments",
                "✅ Playlist URL rewriting",
                "✅ Byte-range passthrough",
                "✅ Per-host header overrides",
                "✅ Outbound proxy support (SOCKS5, HTTP/S)",
                "✅ CORS enabled"
            ],
            "proxy_config": {
                "global_proxies": f"{len(GLOBAL_PROXIES)} proxies loaded",
                "transport_routes": f"{len(TRANSPORT_ROUTES)} routing rules configured",
                "host_overrides": sorted(HOST_OVERRIDES),
            },
            "endpoints": {
                PROXY_PATH: "Stream relay - ?url=<encoded URL>",
                "/api/channels": "Channel catalog - ?category=&region=&q=",
                "/api/info": "JSON endpoint with server information"
            },
            "usage_examples": {
                "proxy_hls": f"{PROXY_PATH}?url=https%3A%2F%2Fexample.com%2Flive%2Findex.m3u8",
            }
        }
        return web.json_response(info, headers=CORS_HEADERS)

    async def cleanup(self):
        """Resource cleanup"""
        try:
            await self.fetcher.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")
