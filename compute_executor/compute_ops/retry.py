"""
Bounded "collection job, then retry" workflow.

Some derived data (external storage details, for example) only exists after
a collection job has run on the server. Reads that fail with that signal
trigger the job once and retry the read once; nothing here loops.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from ..config import COLLECTION_SETTLE_DELAY
from .errors import OperationTimeoutError
from .models import JobResult, ResultCode

T = TypeVar("T")

# Job message fragment reported when the server cannot run the collection job
NOT_IN_CORRECT_STATE = "not in the correct state"


class RetryCoordinator:
    """Runs at most one collection job and at most one retried read per call."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        settle_delay_seconds: float = COLLECTION_SETTLE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.settle_delay_seconds = settle_delay_seconds
        self.sleep = sleep

    def read_with_collection_fallback(
        self,
        primary_read: Callable[[], T],
        is_collection_missing: Callable[[BaseException], bool],
        trigger_collection_job: Callable[[], JobResult],
        retry_read: Callable[[], T],
    ) -> Optional[T]:
        """
        Read, and if the data needs a collection job first, run it and read again.

        Args:
            primary_read: First attempt at the read
            is_collection_missing: Classifies the primary read's error
            trigger_collection_job: Submits and waits for the collection job
            retry_read: Second attempt, called at most once

        Returns:
            The read result, or None when the collection job could not produce data

        Raises:
            Any error from primary_read that is not the collection-missing
            signal, and any error from retry_read, unchanged
        """
        try:
            return primary_read()
        except Exception as e:
            if not is_collection_missing(e):
                raise
            self.logger.info(f"Data not collected yet, running collection job: {e}")

        try:
            result = trigger_collection_job()
        except OperationTimeoutError as e:
            self.logger.warning(f"Collection job did not finish in time, no data available: {e.message}")
            return None

        if not self._collection_succeeded(result):
            self.logger.warning(
                f"Collection job ended with {result.state.value if result.state else 'no state'}"
                f"/{result.result_code.value if result.result_code else 'no result'}: "
                f"{result.message or 'no details'}. No data available."
            )
            return None

        if self.settle_delay_seconds:
            self.sleep(self.settle_delay_seconds)

        return retry_read()

    @staticmethod
    def _collection_succeeded(result: JobResult) -> bool:
        if result.result_code != ResultCode.SUCCESS:
            return False
        details = " ".join(
            text for text in (result.message, result.job.status_details if result.job else None) if text
        )
        return NOT_IN_CORRECT_STATE not in details.lower()
