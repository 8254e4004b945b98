import json
import logging
from aiohttp import web

from config import CHANNELS_FILE
from services.hls_proxy import CORS_HEADERS
from utils.stream_utils import annotate_channel, filter_channels, channel_stats

logger = logging.getLogger(__name__)

# Catalog is read once per process and never modified: {path: [channels]}
CHANNEL_CACHE = {}

# Lets the application point the catalog at another file
CHANNELS_FILE_KEY = web.AppKey('channels_file', str)

channels_bp = web.RouteTableDef()


def load_channels(path: str = None) -> list:
    """Loads and annotates the static channel catalog, caching it per path."""
    path = path or CHANNELS_FILE
    cached = CHANNEL_CACHE.get(path)
    if cached is not None:
        return cached

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if not isinstance(data, dict) or not isinstance(data.get('channels'), list):
        raise ValueError('Invalid channels data format')

    channels = [annotate_channel(channel) for channel in data['channels']]
    CHANNEL_CACHE[path] = channels
    logger.info(f"📺 Loaded {len(channels)} channels from {path}")
    return channels


@channels_bp.get('/api/channels')
async def list_channels(request):
    """Returns the catalog, filtered by ?category=, ?region= and ?q=."""
    try:
        channels = load_channels(request.app.get(CHANNELS_FILE_KEY))
    except (OSError, ValueError) as e:
        logger.error(f"❌ Unable to load channel catalog: {e}")
        return web.json_response({'error': 'Failed to load channels'}, status=500, headers=CORS_HEADERS)

    filtered = filter_channels(
        channels,
        category=request.query.get('category'),
        region=request.query.get('region'),
        search=request.query.get('q'),
    )
    return web.json_response(
        {'channels': filtered, 'stats': channel_stats(channels)},
        headers=CORS_HEADERS
    )
