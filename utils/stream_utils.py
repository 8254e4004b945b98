from urllib.parse import urlparse

from services.manifest_rewriter import proxy_url

# HTTPS origins that still fail in the browser without the relay
PROBLEMATIC_HOSTS = [
    '190.92.10.66',
    '135.125.109.73',
    '148.113.207.98',
    'fl1.moveonjoy.com',
    '176.65.146.237',
    '138.68.138.119',
    '68.183.41.209',
    '69.64.57.208',
]

ASIA_REGIONS = ['Mongolia', 'Philippines', 'Turkey', 'UAE', 'Kuwait']


def needs_proxy(url: str) -> bool:
    """True when a stream URL has to go through the relay to play in the browser."""
    # Plain HTTP is always mixed content on an HTTPS page
    if url.startswith('http://'):
        return True
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return True
    if not hostname:
        return True
    return any(host in hostname for host in PROBLEMATIC_HOSTS)


def get_proxied_url(url: str) -> str:
    if not needs_proxy(url):
        return url
    return proxy_url(url)


def annotate_channel(channel: dict) -> dict:
    """Copy of a catalog entry with needs_proxy, proxy_url and is_secure filled in."""
    url = channel.get('url', '')
    annotated = dict(channel)
    annotated['needs_proxy'] = needs_proxy(url)
    annotated['proxy_url'] = get_proxied_url(url)
    annotated['is_secure'] = url.startswith('https://')
    return annotated


def filter_channels(channels: list, category: str = None, region: str = None, search: str = None) -> list:
    """Applies the catalog filters used by the channel grid.

    ``category`` of 'all' (or empty) keeps everything; 'asia' and 'usa' are
    region groupings rather than real categories.
    """
    filtered = channels

    if category and category != 'all':
        if category == 'asia':
            filtered = [c for c in filtered if c.get('region') in ASIA_REGIONS]
        elif category == 'usa':
            filtered = [c for c in filtered if c.get('region') == 'USA']
        else:
            filtered = [c for c in filtered if c.get('category') == category]

    if region:
        filtered = [c for c in filtered if (c.get('region') or '').lower() == region.lower()]

    if search:
        term = search.lower()
        filtered = [
            c for c in filtered
            if any(term in str(c.get(field) or '').lower() for field in ('title', 'description', 'category', 'region'))
        ]

    return filtered


def channel_stats(channels: list) -> dict:
    return {
        'total': len(channels),
        'sports': len([c for c in channels if c.get('category') == 'sports']),
        'regions': len({c.get('region') for c in channels if c.get('region')}),
        'online': len([c for c in channels if c.get('active')]),
    }
