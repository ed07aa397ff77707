"""
Extraction Response Parsing

Turns whatever the extraction service returned into a list of opportunity
dicts ready for persistence. The response may be a list, a list nested
under a wrapper key, or a single object when the service merged several
pages into one answer. Missing required fields are filled with defaults
derived from the page URL so an item is never dropped for incompleteness.
"""

import json
import logging
import os
import re
from datetime import date
from typing import Any, Optional
from urllib.parse import urlparse

from grantscout.services.deadline import normalize_deadline, parse_deadline
from grantscout.services.url_normalizer import hostname, normalize_url

logger = logging.getLogger(__name__)

# Configuration
SINGLE_OBJECT_POLICY = os.environ.get('SINGLE_OBJECT_RESPONSE_POLICY', 'one_item').lower()

MAX_DESCRIPTION_LENGTH = 2000
MAX_REQUIREMENTS = 10
MAX_REQUIRED_DOCUMENTS = 10
MAX_ESSAY_PROMPTS = 5

# Wrapper keys the service has been seen to nest item lists under
LIST_KEYS = ('opportunities', 'items', 'results', 'data', 'json', 'extract')
ITEM_KEYS = {'title', 'provider', 'description', 'deadline', 'applicationUrl'}

_AMOUNT = re.compile(r'(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?')


def parse_extraction_payload(payload: Any, policy: Optional[str] = None) -> list[dict]:
    """
    Parse a completed extraction payload into raw item dicts.

    Args:
        payload: Data returned by the extraction service
        policy: 'one_item' keeps a lone object as one item, 'reject' drops it

    Returns:
        List of raw item dicts (camelCase keys, as the schema defines them)
    """
    policy = (policy or SINGLE_OBJECT_POLICY).lower()

    if payload is None:
        return []

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.warning(f"Extraction payload is not JSON ({len(payload)} chars), ignoring")
            return []

    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]

    if not isinstance(payload, dict):
        logger.warning(f"Unexpected extraction payload type {type(payload).__name__}")
        return []

    for key in LIST_KEYS:
        nested = payload.get(key)
        if isinstance(nested, list):
            return [item for item in nested if isinstance(item, dict)]
        if isinstance(nested, dict) or (isinstance(nested, str) and key in ('data', 'json', 'extract')):
            return parse_extraction_payload(nested, policy)

    if ITEM_KEYS & set(payload):
        if policy == 'reject':
            logger.warning("Extraction returned a single object instead of a list, discarding it")
            return []
        logger.warning("Extraction returned a single object instead of a list, treating it as one item")
        return [payload]

    logger.warning(f"Extraction payload has no recognisable items (keys: {sorted(payload)[:10]})")
    return []


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        value = '; '.join(str(v) for v in value if v)
    text = str(value).strip()
    return text or None


def _string_list(value: Any, cap: int) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return items[:cap]


def parse_award_amount(value: Any) -> Optional[float]:
    """
    Parse an award amount such as 5000, "$5,000", "up to 10k" or "£2.5M".

    Returns:
        Amount as float, or None when no number is present
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None

    match = _AMOUNT.search(str(value))
    if not match:
        return None
    amount = float(match.group(1).replace(',', ''))
    suffix = (match.group(2) or '').lower()
    if suffix == 'k':
        amount *= 1_000
    elif suffix == 'm':
        amount *= 1_000_000
    return amount if amount > 0 else None


def _valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def validate_opportunity(item: dict) -> tuple[bool, list[str]]:
    """
    Report what is missing or malformed in an extracted item.

    Used for logging; defaults are applied regardless of the outcome.

    Returns:
        Tuple of (valid, list of error strings)
    """
    errors = []

    for field, label in (('title', 'Title'), ('provider', 'Provider'), ('description', 'Description')):
        if not _text(item.get(field)):
            errors.append(f"{label} is required")

    raw_deadline = _text(item.get('deadline'))
    if not raw_deadline:
        errors.append("Deadline is required")
    elif parse_deadline(raw_deadline) is None:
        errors.append("Deadline must be a valid date")

    url = _text(item.get('applicationUrl'))
    if not url:
        errors.append("Application URL is required")
    elif not _valid_url(url):
        errors.append("Application URL must be a valid URL")

    return len(errors) == 0, errors


def _default_description(title: str, provider: str, eligibility: Optional[str], process: Optional[str]) -> str:
    parts = []
    if eligibility:
        parts.append(f"Eligibility: {eligibility}")
    if process:
        parts.append(f"How to apply: {process}")
    if parts:
        return ' '.join(parts)
    return f"{title} offered by {provider}. See the application page for eligibility and application details."


def normalize_item(raw: dict, source_url: str, today: Optional[date] = None) -> dict:
    """
    Build a persistence-ready opportunity dict from one extracted item.

    Args:
        raw: Item as returned by the extraction service
        source_url: URL the item was extracted from, used when the item
            carries no valid application URL and to derive defaults
        today: Reference date for deadline normalization

    Returns:
        Dict with snake_case opportunity fields
    """
    valid, errors = validate_opportunity(raw)
    if not valid:
        logger.debug(f"Extracted item from {source_url} incomplete: {', '.join(errors)}")

    url = _text(raw.get('applicationUrl'))
    if not _valid_url(url):
        url = source_url
    application_url = normalize_url(url)

    host = hostname(url) or hostname(source_url) or 'unknown source'
    provider = _text(raw.get('provider')) or host
    title = _text(raw.get('title')) or f"Opportunity from {host}"

    eligibility = _text(raw.get('eligibility'))
    description = _text(raw.get('description')) or _default_description(
        title, provider, eligibility, _text(raw.get('applicationProcess'))
    )

    requirements = _string_list(raw.get('requirements'), MAX_REQUIREMENTS)
    if not requirements and eligibility:
        requirements = [eligibility]

    essay_prompts = _string_list(raw.get('essayPrompts'), MAX_ESSAY_PROMPTS)

    return {
        'title': title[:500],
        'provider': provider[:300],
        'description': description[:MAX_DESCRIPTION_LENGTH],
        'requirements': requirements,
        'award_amount': parse_award_amount(raw.get('awardAmount')),
        'deadline': normalize_deadline(_text(raw.get('deadline')), application_url, today),
        'application_url': application_url,
        'region': _text(raw.get('region')),
        'required_documents': _string_list(raw.get('requiredDocuments'), MAX_REQUIRED_DOCUMENTS),
        'essay_prompts': essay_prompts or None,
        'contact_info': _text(raw.get('contactInfo')),
        'image_url': _text(raw.get('imageUrl')),
    }
