import asyncio
import json

import pytest
from aiohttp import web

from app import create_app
from routes.channels import CHANNEL_CACHE
from services.hls_proxy import HLSProxy

MEDIA_PLAYLIST = "\n".join([
    "#EXTM3U",
    "#EXT-X-VERSION:3",
    "#EXT-X-TARGETDURATION:6",
    "#EXT-X-MEDIA-SEQUENCE:100",
    '#EXT-X-KEY:METHOD=AES-128,URI="key.bin"',
    "#EXTINF:6.0,",
    "seg0.ts",
    "#EXTINF:6.0,",
    "./seg1.ts",
    "#EXT-X-DISCONTINUITY",
    "#EXTINF:6.0,",
    "/abs/seg2.ts",
    "#EXTINF:6.0,",
    "https://cdn.example/seg3.ts",
    "",
])

SEGMENT_BYTES = bytes(range(256)) * 20  # 5120 bytes

# Set by the origin once a client stops reading its endless stream
STREAM_CLOSED = web.AppKey("stream_closed", asyncio.Event)


def _upstream_app():
    """Fake origin serving playlists, segments and a few failure modes."""
    routes = web.RouteTableDef()

    @routes.get('/live/index.m3u8')
    async def playlist(request):
        return web.Response(text=MEDIA_PLAYLIST, content_type='application/vnd.apple.mpegurl')

    @routes.get('/live/text.m3u8')
    async def playlist_as_text(request):
        return web.Response(text="#EXTM3U\nchunk.ts", content_type='text/plain')

    @routes.get('/channel')
    async def playlist_without_suffix(request):
        return web.Response(text="#EXTM3U\nvariant/low.m3u8", content_type='application/x-mpegURL')

    @routes.get('/redirect/index.m3u8')
    async def redirect(request):
        raise web.HTTPFound('/moved/index.m3u8')

    @routes.get('/moved/index.m3u8')
    async def moved(request):
        return web.Response(text="#EXTM3U\n#EXTINF:4.0,\nseg0.ts", content_type='application/vnd.apple.mpegurl')

    @routes.get('/live/seg0.ts')
    async def segment(request):
        range_header = request.headers.get('Range')
        if range_header == 'bytes=1000-1999':
            return web.Response(
                body=SEGMENT_BYTES[1000:2000],
                status=206,
                content_type='video/mp2t',
                headers={'Content-Range': f'bytes 1000-1999/{len(SEGMENT_BYTES)}'}
            )
        return web.Response(body=SEGMENT_BYTES, content_type='video/mp2t')

    @routes.get('/echo')
    async def echo_headers(request):
        names = ['User-Agent', 'Accept', 'Accept-Language', 'Cache-Control', 'Referer', 'Origin', 'Range']
        return web.json_response({name: request.headers.get(name) for name in names})

    @routes.get('/missing.m3u8')
    async def missing(request):
        raise web.HTTPNotFound()

    @routes.get('/forbidden.ts')
    async def forbidden(request):
        raise web.HTTPForbidden()

    @routes.get('/live/cut.ts')
    async def cut_mid_body(request):
        # Promises the whole segment, sends a fifth of it, then hangs up
        response = web.StreamResponse(headers={'Content-Type': 'video/mp2t'})
        response.content_length = len(SEGMENT_BYTES)
        await response.prepare(request)
        await response.write(SEGMENT_BYTES[:1024])
        request.transport.close()
        return response

    @routes.get('/live/endless.ts')
    async def endless(request):
        response = web.StreamResponse(headers={'Content-Type': 'video/mp2t'})
        await response.prepare(request)
        try:
            for _ in range(2000):
                await response.write(SEGMENT_BYTES * 4)
                await asyncio.sleep(0.01)
        except ConnectionResetError:
            pass
        finally:
            request.app[STREAM_CLOSED].set()
        return response

    app = web.Application()
    app[STREAM_CLOSED] = asyncio.Event()
    app.add_routes(routes)
    return app


@pytest.fixture
async def upstream(aiohttp_server):
    server = await aiohttp_server(_upstream_app())
    return server


@pytest.fixture
def upstream_url(upstream):
    def build(path):
        return str(upstream.make_url(path))
    return build


@pytest.fixture
def channels_file(tmp_path):
    catalog = {
        "channels": [
            {"id": 1, "title": "Sports One", "description": "Football", "url": "http://10.0.0.1/live.m3u8",
             "type": "hls", "quality": "HD", "region": "Mongolia", "category": "sports", "icon": "sports", "active": True},
            {"id": 2, "title": "World News", "description": "News around the clock", "url": "https://news.example/live.m3u8",
             "type": "hls", "quality": "HD", "region": "USA", "category": "news", "icon": "news", "active": True},
            {"id": 3, "title": "Moveonjoy Movies", "description": "Films", "url": "https://fl1.moveonjoy.com/MOVIES/index.m3u8",
             "type": "hls", "quality": "SD", "region": "USA", "category": "movies", "icon": "movie", "active": False},
            {"id": 4, "title": "Istanbul Sport", "description": "Basketball", "url": "https://tr.example/sport.m3u8",
             "type": "hls", "quality": "HD", "region": "Turkey", "category": "sports", "icon": "sports", "active": True,
             "tags": ["basketball"], "language": "tr"},
        ]
    }
    path = tmp_path / "channels.json"
    path.write_text(json.dumps(catalog), encoding='utf-8')
    return str(path)


@pytest.fixture(autouse=True)
def clear_channel_cache():
    CHANNEL_CACHE.clear()
    yield
    CHANNEL_CACHE.clear()


@pytest.fixture
def proxy():
    return HLSProxy()


@pytest.fixture
async def client(aiohttp_client, channels_file, proxy):
    return await aiohttp_client(create_app(proxy=proxy, channels_file=channels_file))
