"""
Extraction Poller

Drives an extraction job from submission to a terminal state:

    SUBMITTED → POLLING → COMPLETED | FAILED | TIMED_OUT

Each tick asks the extract client for the job status and then waits one
interval on the clock. The clock's wait is interruptible by a cancel event
so the discovery job timeout can stop a run that is stuck polling.
"""

import enum
import logging
import os
import threading
import time
from typing import Any, Optional

from grantscout.errors import ExtractionCancelled, ExtractionFailed, ExtractionTimeout
from grantscout.services.extract_client import ExtractClient

logger = logging.getLogger(__name__)

# Configuration
POLL_INTERVAL_SECONDS = float(os.environ.get('EXTRACT_POLL_INTERVAL_SECONDS', '5'))
POLL_MAX_ATTEMPTS = int(os.environ.get('EXTRACT_POLL_MAX_ATTEMPTS', '60'))

CONTINUE_STATUSES = {'pending', 'processing', 'scraping', 'queued'}
FAILED_STATUSES = {'failed', 'cancelled'}


class PollState(enum.Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Clock:
    """Wall clock whose sleep returns early when a cancel event is set."""

    def sleep(self, seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Wait for the given number of seconds.

        Returns:
            True if the wait was interrupted by cancellation
        """
        if cancel_event is None:
            time.sleep(seconds)
            return False
        return cancel_event.wait(seconds)


class ExtractionPoller:
    """
    Poll one extraction job until it completes, fails or times out.

    Args:
        client: Extract client used for status calls
        interval: Seconds between polls
        max_attempts: Poll ceiling; exceeding it raises ExtractionTimeout
        clock: Clock used for waiting (inject a fake in tests)
        cancel_event: Set by the job timeout to abort polling
    """

    def __init__(
        self,
        client: ExtractClient,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        clock: Optional[Clock] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self.clock = clock or Clock()
        self.cancel_event = cancel_event
        self.state = PollState.SUBMITTED
        self.attempts = 0

    def wait(self, job_id: str) -> Any:
        """
        Block until the job reaches a terminal state.

        Returns:
            The completed job's payload

        Raises:
            ExtractionFailed: upstream reported failure
            ExtractionTimeout: attempt ceiling exceeded
            ExtractionCancelled: cancel event set while polling
        """
        self.state = PollState.POLLING
        self.attempts = 0

        while self.attempts < self.max_attempts:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.state = PollState.TIMED_OUT
                raise ExtractionCancelled(job_id, self.attempts, self.interval)

            self.attempts += 1
            snapshot = self.client.get_status(job_id)
            status = (snapshot.status or '').lower()

            if status == 'completed':
                self.state = PollState.COMPLETED
                logger.info(f"Extraction job {job_id} completed after {self.attempts} polls")
                return snapshot.data

            if status in FAILED_STATUSES:
                self.state = PollState.FAILED
                raise ExtractionFailed(job_id, snapshot.error or status)

            if status not in CONTINUE_STATUSES:
                logger.warning(f"Extraction job {job_id} returned unknown status '{status}', still polling")

            if self.attempts >= self.max_attempts:
                break

            if self.clock.sleep(self.interval, self.cancel_event):
                self.state = PollState.TIMED_OUT
                raise ExtractionCancelled(job_id, self.attempts, self.interval)

        self.state = PollState.TIMED_OUT
        logger.error(f"Extraction job {job_id} still pending after {self.attempts} polls")
        raise ExtractionTimeout(job_id, self.attempts, self.interval)
