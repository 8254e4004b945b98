import enum
import logging
import urllib.parse
from urllib.parse import urlparse, urljoin

logger = logging.getLogger(__name__)

PROXY_PATH = '/api/proxy'

# Characters encodeURIComponent leaves alone besides alphanumerics and '_.-~'
_URI_COMPONENT_SAFE = "!*'()"


class LineKind(enum.Enum):
    BLANK = "blank"
    DIRECTIVE = "directive"
    ABSOLUTE = "absolute"
    ROOT_RELATIVE = "root_relative"
    RELATIVE = "relative"
    BARE_REFERENCE = "bare_reference"
    UNCLASSIFIED = "unclassified"


def classify_line(line: str) -> LineKind:
    """Classifies an already-stripped playlist line. First match wins."""
    if not line:
        return LineKind.BLANK
    if line.startswith('#'):
        # Directives are never scanned for embedded URIs
        return LineKind.DIRECTIVE
    if line.startswith(('http://', 'https://')):
        return LineKind.ABSOLUTE
    if line.startswith('/'):
        return LineKind.ROOT_RELATIVE
    if line.startswith(('./', '../')):
        return LineKind.RELATIVE
    if '.ts' in line or '.m3u8' in line:
        return LineKind.BARE_REFERENCE
    return LineKind.UNCLASSIFIED


def proxy_url(absolute_url: str) -> str:
    """Relay-relative URL that re-enters the proxy endpoint for ``absolute_url``."""
    return f"{PROXY_PATH}?url={urllib.parse.quote(absolute_url, safe=_URI_COMPONENT_SAFE)}"


class ManifestRewriter:
    """Line-for-line HLS playlist rewriter.

    Every segment and sub-playlist reference is turned into a relay URL so the
    player keeps fetching through the same origin. Line order and line count
    are preserved exactly, which keeps media sequence numbers and
    discontinuity counters aligned with the original playlist.
    """

    @staticmethod
    def _resolve(line: str, base_url: str) -> str:
        try:
            absolute_url = urljoin(base_url, line)
        except ValueError as e:
            logger.debug(f"Keeping unresolvable playlist line {line!r}: {e}")
            return line
        if not urlparse(absolute_url).scheme:
            return line
        return proxy_url(absolute_url)

    @staticmethod
    def rewrite_line(line: str, base_url: str, origin: str) -> str:
        line = line.strip()
        kind = classify_line(line)

        if kind in (LineKind.BLANK, LineKind.DIRECTIVE, LineKind.UNCLASSIFIED):
            return line
        if kind is LineKind.ABSOLUTE:
            return proxy_url(line)
        if kind is LineKind.ROOT_RELATIVE:
            return proxy_url(f"{origin}{line}")
        # RELATIVE and BARE_REFERENCE resolve the same way
        return ManifestRewriter._resolve(line, base_url)

    @staticmethod
    def rewrite_manifest_urls(manifest_content: str, base_url: str) -> str:
        """Rewrites every reference in ``manifest_content`` relative to ``base_url``.

        A line that cannot be resolved is emitted unchanged rather than
        dropped or failing the whole playlist.
        """
        parsed_base = urlparse(base_url)
        # scheme://host[:port], credentials dropped
        origin = f"{parsed_base.scheme}://{parsed_base.netloc.rpartition('@')[2]}"

        rewritten_lines = []
        for line in manifest_content.split('\n'):
            try:
                rewritten_lines.append(ManifestRewriter.rewrite_line(line, base_url, origin))
            except Exception as e:
                logger.warning(f"⚠️ Could not rewrite playlist line, keeping it: {e}")
                rewritten_lines.append(line.strip())

        return '\n'.join(rewritten_lines)
