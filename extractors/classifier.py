import enum
import logging
import urllib.parse
from collections import namedtuple
from urllib.parse import urlparse

from config import HOST_OVERRIDES
from services.errors import InvalidTargetError

logger = logging.getLogger(__name__)

SEGMENT_EXTENSIONS = ('.ts', '.aac', '.m4s', '.mp4', '.m4a', '.m4v')

# Never valid inside a host name, on top of whitespace and control characters
FORBIDDEN_HOST_CHARS = set('<>^|\\"`{}')


class ResourceKind(enum.Enum):
    MANIFEST = "manifest"
    SEGMENT = "segment"
    OPAQUE = "opaque"


# Validated relay target. Built once per request, never shared.
ProxyRequest = namedtuple(
    "ProxyRequest",
    ["target_url", "range_header", "hostname", "kind", "override_headers"]
)


def decode_target(raw: str) -> str:
    """Percent-decodes the target once. Falls back to the raw string on invalid escapes."""
    try:
        return urllib.parse.unquote(raw, errors='strict')
    except UnicodeDecodeError:
        return raw


def classify_kind(url: str) -> ResourceKind:
    path = urlparse(url).path.lower()
    if path.endswith('.m3u8') or url.lower().endswith('.m3u8'):
        return ResourceKind.MANIFEST
    if path.endswith(SEGMENT_EXTENSIONS):
        return ResourceKind.SEGMENT
    return ResourceKind.OPAQUE


def valid_hostname(hostname: str) -> bool:
    if not hostname:
        return False
    return not any(
        ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7f or ch in FORBIDDEN_HOST_CHARS
        for ch in hostname
    )


def host_headers(hostname: str, overrides: dict = None) -> dict:
    """Returns a copy of the extra outbound headers registered for an exact hostname."""
    table = HOST_OVERRIDES if overrides is None else overrides
    return dict(table.get((hostname or '').lower(), {}))


def classify_request(raw_url: str, range_header: str = None, overrides: dict = None) -> ProxyRequest:
    """Turns the raw ``url`` query parameter into a validated ProxyRequest.

    Raises InvalidTargetError when the parameter is missing or does not parse
    as an absolute http(s) URL. No network access happens here.
    """
    if not raw_url:
        raise InvalidTargetError("URL parameter is required")

    target_url = decode_target(raw_url).strip()

    try:
        parsed = urlparse(target_url)
        hostname = parsed.hostname
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        raise InvalidTargetError("Invalid URL format")

    if parsed.scheme.lower() not in ('http', 'https') or not valid_hostname(hostname):
        raise InvalidTargetError("Invalid URL format")

    extra = host_headers(hostname, overrides)
    if extra:
        logger.debug(f"🏷️ Applying header overrides for {hostname}: {list(extra)}")

    return ProxyRequest(
        target_url=target_url,
        range_header=range_header or None,
        hostname=hostname,
        kind=classify_kind(target_url),
        override_headers=extra,
    )
