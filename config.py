import os
import logging
import random
from dotenv import load_dotenv

load_dotenv() # Load variables from .env file

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

# --- Proxy configuration ---
def parse_proxies(proxy_env_var: str) -> list:
    """Parses a comma-separated proxy string from an environment variable."""
    proxies_str = os.environ.get(proxy_env_var, "").strip()
    if proxies_str:
        return [p.strip() for p in proxies_str.split(',') if p.strip()]
    return []

def _parse_blocks(raw: str) -> list:
    """Splits '{A=1, B=2}, {A=3}' into a list of {'A': '1', 'B': '2'} dicts."""
    blocks = []
    for part in raw.replace(' ', '').split('},{'):
        part = part.strip('{}')
        if not part:
            continue
        fields = {}
        for item in part.split(','):
            if '=' not in item:
                continue
            key, value = item.split('=', 1)
            fields[key.upper()] = value
        blocks.append(fields)
    return blocks

def parse_transport_routes() -> list:
    """Parses TRANSPORT_ROUTES in the format {URL=domain, PROXY=proxy, DISABLE_SSL=true/false}, {URL=domain2, PROXY=proxy2}"""
    routes_str = os.environ.get('TRANSPORT_ROUTES', "").strip()
    if not routes_str:
        return []

    routes = []
    try:
        for fields in _parse_blocks(routes_str):
            url_match = fields.get('URL')
            if not url_match:
                continue
            disable_ssl = fields.get('DISABLE_SSL', '').lower() in ('true', '1', 'yes', 'on')
            routes.append({
                'url': url_match,
                'proxy': fields.get('PROXY') or None,
                'disable_ssl': disable_ssl
            })
    except Exception as e:
        logger.warning(f"Error parsing TRANSPORT_ROUTES: {e}")

    return routes

def get_proxy_for_url(url: str, transport_routes: list, global_proxies: list) -> str:
    """Finds the appropriate proxy for a URL based on TRANSPORT_ROUTES"""
    if not url or not transport_routes:
        return random.choice(global_proxies) if global_proxies else None

    for route in transport_routes:
        if route['url'] in url:
            # A matching route without a proxy means direct connection
            return route['proxy']

    return random.choice(global_proxies) if global_proxies else None

def get_ssl_setting_for_url(url: str, transport_routes: list) -> bool:
    """Determines if SSL verification should be disabled for a URL based on TRANSPORT_ROUTES"""
    if not url or not transport_routes:
        return False

    for route in transport_routes:
        if route['url'] in url:
            return route.get('disable_ssl', False)

    return False

# --- Per-host header overrides ---
# Origins that reject requests without their own Referer/Origin.
DEFAULT_HOST_OVERRIDES = {
    '190.92.10.66': {
        'Referer': 'https://190.92.10.66/',
        'Origin': 'https://190.92.10.66',
    },
    '135.125.109.73': {
        'Referer': 'http://135.125.109.73/',
    },
    '148.113.207.98': {
        'Referer': 'http://148.113.207.98/',
    },
}

def parse_host_overrides() -> dict:
    """Parses HOST_OVERRIDES in the format {HOST=host, REFERER=url, ORIGIN=url}, {HOST=host2, REFERER=url2}

    Entries are merged on top of DEFAULT_HOST_OVERRIDES. Any key other than
    HOST is sent as a header, e.g. REFERER -> Referer, X-TOKEN -> X-Token.
    """
    overrides = {host: dict(headers) for host, headers in DEFAULT_HOST_OVERRIDES.items()}
    raw = os.environ.get('HOST_OVERRIDES', "").strip()
    if not raw:
        return overrides

    try:
        for fields in _parse_blocks(raw):
            host = fields.pop('HOST', '').lower()
            if not host:
                continue
            headers = overrides.setdefault(host, {})
            for key, value in fields.items():
                headers[key.title()] = value
    except Exception as e:
        logger.warning(f"Error parsing HOST_OVERRIDES: {e}")

    return overrides

GLOBAL_PROXIES = parse_proxies('GLOBAL_PROXY')
TRANSPORT_ROUTES = parse_transport_routes()
HOST_OVERRIDES = parse_host_overrides()

if GLOBAL_PROXIES: logging.info(f"🌍 Loaded {len(GLOBAL_PROXIES)} global proxies.")
if TRANSPORT_ROUTES: logging.info(f"🚦 Loaded {len(TRANSPORT_ROUTES)} transport rules.")
logging.info(f"🏷️ Loaded header overrides for {len(HOST_OVERRIDES)} hosts.")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", 7860))

# --- Upstream ---
UPSTREAM_CONNECT_TIMEOUT = float(os.environ.get("UPSTREAM_CONNECT_TIMEOUT", 30))
UPSTREAM_READ_TIMEOUT = float(os.environ.get("UPSTREAM_READ_TIMEOUT", 30))
CHUNK_SIZE = int(os.environ.get("CHUNK_SIZE", 8192))

# --- Channel catalog ---
CHANNELS_FILE = os.environ.get(
    "CHANNELS_FILE",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data', 'channels.json')
)
