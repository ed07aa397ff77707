"""
Batch Extractor - Two-Phase Discovery

Phase 1 searches for candidate URLs. Phase 2 sends the URLs to structured
extraction in fixed-size batches, one batch at a time with a delay between
batches to stay under upstream rate limits.

A batch that yields fewer items than URLs submitted is degraded: every URL
in it is re-extracted individually and whichever of (individual results,
batch results merged with unseen individual results) holds more items wins.
A batch that errors outright falls back to individual extraction. Poll
timeouts and job cancellation are not recovered here; they end the run.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterator, Optional

from grantscout.errors import ExtractionCancelled, ExtractionTimeout, NoSearchResults
from grantscout.services.extract_client import (
    BATCH_EXTRACTION_PROMPT,
    OPPORTUNITY_BATCH_SCHEMA,
    OPPORTUNITY_ITEM_SCHEMA,
    SINGLE_EXTRACTION_PROMPT,
    ExtractClient,
)
from grantscout.services.extraction_parsing import normalize_item, parse_extraction_payload
from grantscout.services.extraction_poller import (
    POLL_INTERVAL_SECONDS,
    POLL_MAX_ATTEMPTS,
    Clock,
    ExtractionPoller,
)
from grantscout.services.image_resolver import resolve_images
from grantscout.services.search_client import SearchClient
from grantscout.services.url_normalizer import deduplicate_urls, normalize_url

logger = logging.getLogger(__name__)

# Configuration
BATCH_SIZE = int(os.environ.get('EXTRACT_BATCH_SIZE', '10'))
BATCH_DELAY_SECONDS = float(os.environ.get('EXTRACT_BATCH_DELAY_SECONDS', '2'))


def search_urls(search_client: SearchClient, query: str, limit: int) -> list[str]:
    """
    Phase 1: run the search and return unique candidate URLs.

    Raises:
        NoSearchResults: the search returned nothing
        UpstreamUnavailable: the search call failed
    """
    results = search_client.search(query, limit)
    urls, _ = deduplicate_urls([result.url for result in results])
    if not urls:
        raise NoSearchResults(query)
    return urls[:limit]


@dataclass
class BatchResult:
    """Outcome of one extraction batch."""
    index: int
    urls: list[str]
    items: list[dict] = field(default_factory=list)
    degraded: bool = False
    fell_back: bool = False
    error: Optional[str] = None


class BatchExtractor:
    """
    Phase 2 orchestration over an injected extract client.

    Args:
        client: Extract client (submit + status)
        batch_size: URLs per extraction job
        batch_delay: Seconds to wait between batches
        clock: Clock shared with the poller (fake in tests)
        cancel_event: Set by the discovery job timeout
        poll_interval: Seconds between status polls
        poll_max_attempts: Poll ceiling per extraction job
        image_resolver: Callable mapping URLs to preview images, or None to skip
        policy: Single-object response policy
        today: Reference date for deadline normalization
    """

    def __init__(
        self,
        client: ExtractClient,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY_SECONDS,
        clock: Optional[Clock] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        poll_max_attempts: int = POLL_MAX_ATTEMPTS,
        image_resolver: Optional[Callable[[list[str]], dict]] = resolve_images,
        policy: Optional[str] = None,
        today: Optional[date] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.client = client
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.clock = clock or Clock()
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self.image_resolver = image_resolver
        self.policy = policy
        self.today = today

    def _poller(self) -> ExtractionPoller:
        return ExtractionPoller(
            self.client,
            interval=self.poll_interval,
            max_attempts=self.poll_max_attempts,
            clock=self.clock,
            cancel_event=self.cancel_event,
        )

    def _check_cancelled(self, label: str):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ExtractionCancelled(label, 0, self.poll_interval)

    def extract_batch(self, urls: list[str]) -> list[dict]:
        """
        Submit one batch and return its normalized items.

        Items without their own application URL take the batch URL at the
        same position.

        Raises:
            UpstreamUnavailable, ExtractionFailed, ExtractionTimeout
        """
        job_id = self.client.submit(urls, BATCH_EXTRACTION_PROMPT, OPPORTUNITY_BATCH_SCHEMA)
        payload = self._poller().wait(job_id)
        raw_items = parse_extraction_payload(payload, self.policy)

        items = []
        for position, raw in enumerate(raw_items):
            source_url = urls[min(position, len(urls) - 1)]
            items.append(normalize_item(raw, source_url, self.today))
        return items

    def extract_single(self, url: str) -> Optional[dict]:
        """
        Extract one URL on its own.

        Returns:
            Normalized item, or None on any failure other than cancellation
        """
        self._check_cancelled(f"single:{url}")
        try:
            job_id = self.client.submit([url], SINGLE_EXTRACTION_PROMPT, OPPORTUNITY_ITEM_SCHEMA)
            payload = self._poller().wait(job_id)
        except ExtractionCancelled:
            raise
        except Exception as e:
            logger.warning(f"Individual extraction failed for {url}: {e}")
            return None

        raw_items = parse_extraction_payload(payload, 'one_item')
        if not raw_items:
            logger.warning(f"Individual extraction for {url} returned no data")
            return None
        # The submitted URL is authoritative for single-page extraction
        raw = dict(raw_items[0])
        raw['applicationUrl'] = url
        return normalize_item(raw, url, self.today)

    def extract_individually(self, urls: list[str]) -> list[dict]:
        items = []
        for url in urls:
            item = self.extract_single(url)
            if item is not None:
                items.append(item)
        return items

    def process_batch(self, index: int, urls: list[str]) -> BatchResult:
        """
        Extract one batch with degraded-batch and error fallbacks.

        Raises:
            ExtractionTimeout: poll ceiling exceeded (includes cancellation)
        """
        result = BatchResult(index=index, urls=list(urls))

        try:
            batch_items = self.extract_batch(urls)
        except ExtractionTimeout:
            raise
        except Exception as e:
            logger.warning(f"Batch {index} failed ({e}), extracting {len(urls)} URLs individually")
            result.fell_back = True
            result.error = str(e)
            result.items = self.extract_individually(urls)
            self._attach_images(result)
            return result

        if len(batch_items) < len(urls):
            logger.warning(
                f"Batch {index} degraded: {len(batch_items)} items for {len(urls)} URLs, "
                f"extracting individually"
            )
            result.degraded = True
            individual = self.extract_individually(urls)
            merged = _merge_unique(batch_items, individual)
            result.items = individual if len(individual) >= len(merged) else merged
            logger.info(
                f"Batch {index} recovery: individual={len(individual)} merged={len(merged)} "
                f"kept={len(result.items)}"
            )
        else:
            result.items = batch_items

        self._attach_images(result)
        return result

    def _attach_images(self, result: BatchResult):
        """Fill image_url on items from a parallel lookup over the batch URLs."""
        if self.image_resolver is None or not result.items:
            return
        try:
            images = self.image_resolver(result.urls)
        except Exception as e:
            logger.warning(f"Image enrichment failed for batch {result.index}: {e}")
            return

        by_url = {normalize_url(url): image for url, image in images.items() if image}
        for item in result.items:
            if not item.get('image_url'):
                item['image_url'] = by_url.get(item['application_url'])

    def iter_batches(self, urls: list[str]) -> Iterator[BatchResult]:
        """
        Process URLs batch by batch, yielding each result as it completes.

        Callers persist each yielded batch before asking for the next, so
        work finished before a later failure is kept.
        """
        batches = [urls[i:i + self.batch_size] for i in range(0, len(urls), self.batch_size)]

        for index, batch in enumerate(batches, start=1):
            self._check_cancelled(f"batch:{index}")
            logger.info(f"Extracting batch {index}/{len(batches)} ({len(batch)} URLs)")
            yield self.process_batch(index, batch)

            if index < len(batches) and self.batch_delay > 0:
                if self.clock.sleep(self.batch_delay, self.cancel_event):
                    raise ExtractionCancelled(f"batch:{index + 1}", 0, self.poll_interval)

    def extract_all(self, urls: list[str]) -> list[dict]:
        items = []
        for result in self.iter_batches(urls):
            items.extend(result.items)
        return items


def _merge_unique(batch_items: list[dict], individual_items: list[dict]) -> list[dict]:
    """Batch items first, then individual items whose URL is not yet represented."""
    merged = []
    seen = set()
    for item in batch_items + individual_items:
        key = item['application_url']
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return merged
