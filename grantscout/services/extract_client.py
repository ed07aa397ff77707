"""
Structured Extraction Client

Submits URLs to Firecrawl's asynchronous extract endpoint with a strict
JSON schema and reads back job status. Polling itself lives in
extraction_poller so it can be driven by a fake clock in tests.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from firecrawl import Firecrawl

from grantscout.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


OPPORTUNITY_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "provider": {"type": "string"},
        "description": {"type": "string"},
        "deadline": {"type": "string"},
        "awardAmount": {"type": ["number", "string", "null"]},
        "requirements": {"type": "array", "items": {"type": "string"}},
        "requiredDocuments": {"type": "array", "items": {"type": "string"}},
        "essayPrompts": {"type": "array", "items": {"type": "string"}},
        "contactInfo": {"type": "string"},
        "region": {"type": "string"},
        "applicationUrl": {"type": "string"},
        "eligibility": {"type": "string"},
        "applicationProcess": {"type": "string"},
    },
    "required": ["title", "provider", "description", "deadline"],
}

OPPORTUNITY_BATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "opportunities": {
            "type": "array",
            "items": OPPORTUNITY_ITEM_SCHEMA,
        }
    },
    "required": ["opportunities"],
}

BATCH_EXTRACTION_PROMPT = """Extract every scholarship, grant, fellowship or award described on these pages.
Return ONE entry in "opportunities" PER PAGE, in the same order as the URLs were given, and never merge pages together.
For each entry provide:
- title: the name of the funding opportunity
- provider: the organisation offering it
- description: a short plain-language summary (max 2000 characters)
- deadline: the application deadline as an ISO date (YYYY-MM-DD) if stated
- awardAmount: the award value as a number if stated
- requirements: eligibility requirements (education level, discipline, nationality, GPA)
- requiredDocuments: documents an applicant must submit
- essayPrompts: essay or personal statement questions, if any
- contactInfo: contact email or phone
- region: countries or regions eligible
- applicationUrl: the page URL the entry was extracted from"""

SINGLE_EXTRACTION_PROMPT = """Extract the scholarship, grant, fellowship or award described on this page.
Provide title, provider, description (max 2000 characters), deadline as an ISO date (YYYY-MM-DD) if stated,
awardAmount as a number if stated, requirements, requiredDocuments, essayPrompts, contactInfo, region,
and, when no summary is available, the eligibility and applicationProcess text."""


@dataclass
class ExtractStatus:
    """Snapshot of an extraction job."""
    status: str
    data: Any = None
    error: Optional[str] = None


class ExtractClient(Protocol):
    def submit(self, urls: list[str], prompt: str, schema: dict) -> str:
        ...

    def get_status(self, job_id: str) -> ExtractStatus:
        ...


def _read(obj: Any, key: str, default=None):
    """Read a field from an SDK model or a raw dict payload."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class FirecrawlExtractClient:
    """Asynchronous structured extraction via Firecrawl."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Firecrawl] = None):
        if client is None:
            api_key = api_key or os.environ.get('FIRECRAWL_API_KEY')
            if not api_key:
                raise ValueError("FIRECRAWL_API_KEY environment variable not set")
            client = Firecrawl(api_key=api_key)
        self.client = client

    def submit(self, urls: list[str], prompt: str, schema: dict) -> str:
        """
        Start an extraction job.

        Returns:
            Upstream job id
        """
        try:
            job = self.client.start_extract(urls=urls, prompt=prompt, schema=schema)
        except Exception as e:
            raise UpstreamUnavailable('firecrawl-extract', str(e)) from e

        job_id = _read(job, 'id')
        if not job_id:
            raise UpstreamUnavailable('firecrawl-extract', f"no job id returned for {len(urls)} URLs")
        logger.info(f"Submitted extraction job {job_id} for {len(urls)} URLs")
        return job_id

    def get_status(self, job_id: str) -> ExtractStatus:
        try:
            response = self.client.get_extract_status(job_id)
        except Exception as e:
            raise UpstreamUnavailable('firecrawl-extract', str(e)) from e

        return ExtractStatus(
            status=str(_read(response, 'status', '') or '').lower(),
            data=_read(response, 'data'),
            error=_read(response, 'error'),
        )


def get_extract_client() -> ExtractClient:
    return FirecrawlExtractClient()
