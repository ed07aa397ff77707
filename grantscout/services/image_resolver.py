"""
Image Resolver Service

Best-effort preview image lookup for discovered pages. Reads og:image /
twitter:image metadata from the page head. Every failure resolves to None:
an image never decides whether an extracted opportunity is kept.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Request timeout (seconds)
FETCH_TIMEOUT = float(os.environ.get('IMAGE_FETCH_TIMEOUT_SECONDS', '10'))
MAX_WORKERS = 10

# Metadata tags tried in order
IMAGE_META_TAGS = [
    ('property', 'og:image'),
    ('property', 'og:image:url'),
    ('name', 'twitter:image'),
    ('name', 'twitter:image:src'),
]

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (compatible; GrantscoutBot/1.0)',
    'Accept': 'text/html,application/xhtml+xml',
}


def extract_image_from_html(html: str, base_url: str) -> Optional[str]:
    """
    Find the preview image declared in an HTML document.

    Relative image paths are resolved against base_url.
    """
    soup = BeautifulSoup(html, 'html.parser')

    for attr, value in IMAGE_META_TAGS:
        tag = soup.find('meta', attrs={attr: value})
        if tag and tag.get('content'):
            return urljoin(base_url, tag['content'].strip())

    link = soup.find('link', rel='image_src')
    if link and link.get('href'):
        return urljoin(base_url, link['href'].strip())

    return None


def resolve_image(url: str, client: Optional[httpx.Client] = None) -> Optional[str]:
    """
    Fetch a page and return its preview image URL.

    Args:
        url: Page URL
        client: Optional httpx client (tests pass one with a MockTransport)

    Returns:
        Image URL or None on any failure
    """
    try:
        if client is None:
            response = httpx.get(url, timeout=FETCH_TIMEOUT, follow_redirects=True, headers=HEADERS)
        else:
            response = client.get(url, follow_redirects=True, headers=HEADERS)
        response.raise_for_status()

        content_type = response.headers.get('content-type', '')
        if 'html' not in content_type:
            return None

        return extract_image_from_html(response.text, str(response.url))

    except httpx.HTTPStatusError as e:
        logger.debug(f"HTTP error fetching image for {url}: {e.response.status_code}")
    except httpx.RequestError as e:
        logger.debug(f"Request error fetching image for {url}: {e}")
    except Exception as e:
        logger.warning(f"Error resolving image for {url}: {e}")

    return None


def resolve_images(urls: list[str], client: Optional[httpx.Client] = None) -> dict[str, Optional[str]]:
    """
    Resolve preview images for all URLs concurrently.

    Each URL is its own failure domain; the call returns once every lookup
    has finished or timed out.

    Returns:
        Mapping of page URL to image URL (None where nothing was found)
    """
    if not urls:
        return {}

    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(urls))) as executor:
        futures = {url: executor.submit(resolve_image, url, client) for url in urls}
        images = {url: future.result() for url, future in futures.items()}

    found = sum(1 for image in images.values() if image)
    logger.info(f"Resolved {found}/{len(urls)} preview images")
    return images
