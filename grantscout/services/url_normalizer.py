"""
URL Normalization Service

Normalizes application URLs so the same opportunity discovered through
different searches maps to one catalogue row. Removes tracking parameters,
fragments and trailing slashes; lowercases only scheme and host since paths
on many scholarship portals are case-sensitive.
"""

import logging
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

logger = logging.getLogger(__name__)

# Query parameters to always remove (tracking)
REMOVE_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'mc_cid', 'mc_eid', '_ga', '_gl', 'ref',
}


def normalize_url(url: str) -> str:
    """
    Normalize a URL for deduplication.

    Normalization rules:
    1. Lowercase scheme and host, keep path case
    2. Remove www. prefix
    3. Remove trailing slashes from path
    4. Remove tracking query parameters
    5. Remove fragments (#...)

    Args:
        url: Original URL

    Returns:
        Normalized URL string ('' for empty input)
    """
    if not url:
        return ''

    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        logger.warning(f"URL normalization failed for '{url}': {e}")
        return url

    if not parsed.netloc:
        return url

    scheme = (parsed.scheme or 'https').lower()
    netloc = parsed.netloc.lower()
    if netloc.startswith('www.'):
        netloc = netloc[4:]

    path = parsed.path.rstrip('/')

    query = ''
    if parsed.query:
        params = [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=False)
            if key.lower() not in REMOVE_PARAMS
        ]
        query = urlencode(params) if params else ''

    return urlunparse((scheme, netloc, path, '', query, ''))


def hostname(url: str) -> str:
    """Host of a URL without the www. prefix ('' when unparseable)."""
    try:
        netloc = urlparse((url or '').strip()).netloc.lower()
    except ValueError:
        return ''
    netloc = netloc.split('@')[-1].split(':')[0]
    return netloc[4:] if netloc.startswith('www.') else netloc


def deduplicate_urls(urls: list[str]) -> tuple[list[str], int]:
    """
    Deduplicate URLs by normalized form, keeping first-seen order.

    Returns:
        Tuple of (unique URLs as originally given, duplicate count)
    """
    seen = set()
    unique = []
    duplicates = 0

    for url in urls:
        if not url:
            continue
        normalized = normalize_url(url)
        if normalized in seen:
            duplicates += 1
            logger.debug(f"Duplicate URL skipped: {url}")
            continue
        seen.add(normalized)
        unique.append(url)

    if duplicates:
        logger.info(f"URL deduplication: {len(urls)} → {len(unique)} ({duplicates} duplicates removed)")
    return unique, duplicates
