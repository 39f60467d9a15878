"""
Job polling for Compute Ops.

Compute Ops job pattern:
- POST to the jobs endpoint returns the new job resource
- Poll the job resourceUri until state is COMPLETE, ERROR or STALLED
- Read the activity attached to the job for a human-readable outcome

ERROR and STALLED are returned as data; only timeouts, interruptions and
transport failures raise.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError as ModelValidationError

from ..config import DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT
from . import endpoints
from .errors import (
    ComputeOpsError,
    ErrorCodes,
    OperationTimeoutError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
    WaitInterruptedError,
)
from .models import Job, JobResult, Schedule

JobHandle = Union[str, Job, Schedule, Dict[str, Any]]


class JobPoller:
    """Blocking poll loop driven by an injectable clock and sleep."""

    def __init__(
        self,
        adapter,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            adapter: Transport exposing make_request()
            logger: Logger for progress output
            clock: Monotonic seconds source
            sleep: Sleep function called between polls
        """
        self.adapter = adapter
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.sleep = sleep

    def resolve_handle(self, job_handle: JobHandle) -> str:
        """
        Turn a job handle into a job URI without any I/O.

        Raises:
            UnsupportedOperationError: If the handle is a schedule
            ValidationError: If the handle does not look like a job
        """
        if isinstance(job_handle, Schedule):
            raise self._schedule_handle_error(job_handle.resource_uri)

        if isinstance(job_handle, Job):
            uri = job_handle.resource_uri
        elif isinstance(job_handle, dict):
            if job_handle.get("type") == endpoints.SCHEDULE_RESOURCE_TYPE:
                raise self._schedule_handle_error(job_handle.get("resourceUri"))
            uri = job_handle.get("resourceUri")
        elif isinstance(job_handle, str):
            uri = job_handle
        else:
            uri = None

        if isinstance(uri, str):
            uri = uri.strip()
            if endpoints.is_schedule_uri(uri):
                raise self._schedule_handle_error(uri)
            if endpoints.is_job_uri(uri):
                return uri

        raise ValidationError(
            f"Invalid job handle {job_handle!r}: expected a job resource URI such as "
            f"{endpoints.JOBS_ENDPOINT}/<id>",
            error_code=ErrorCodes.INVALID_JOB_HANDLE,
        )

    @staticmethod
    def _schedule_handle_error(uri: Optional[str]) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            f"Waiting on schedule {uri} is not supported; wait on the job it creates instead",
            error_code=ErrorCodes.WAIT_ON_SCHEDULE,
        )

    def fetch_job(self, job_uri: str, operation_name: str = "Job") -> Job:
        data = self.adapter.make_request(
            method='GET',
            endpoint=job_uri,
            operation_name=f"{operation_name} - Poll Job",
        )
        try:
            return Job.model_validate(data)
        except ModelValidationError as e:
            raise TransportError(
                f"Malformed job payload for {job_uri}: {e}",
                kind=ErrorCodes.INVALID_RESPONSE,
                response_body=data,
            )

    def fetch_activity_message(self, job_uri: str) -> Optional[str]:
        """Best-effort read of the activity message attached to a job."""
        try:
            data = self.adapter.make_request(
                method='GET',
                endpoint=endpoints.activities_for(job_uri),
                operation_name="Get Job Activity",
            )
        except ComputeOpsError as e:
            self.logger.debug(f"No activity message for {job_uri}: {e.message}")
            return None

        items = data.get('items') if isinstance(data, dict) else None
        if not items:
            return None
        first = items[0] if isinstance(items, list) else None
        if not isinstance(first, dict):
            self.logger.debug(f"Unexpected activity entry for {job_uri}: {first!r}")
            return None
        message = first.get('formattedMessage') or first.get('message')
        return message if isinstance(message, str) else None

    def wait(
        self,
        job_handle: JobHandle,
        timeout_seconds: float = DEFAULT_WAIT_TIMEOUT,
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
        stop_event: Optional[threading.Event] = None,
        fetch_message: bool = True,
        operation_name: str = "Job",
    ) -> JobResult:
        """
        Poll a job until it reaches a terminal state or the timeout expires.

        Args:
            job_handle: Job URI, Job, or raw job dict
            timeout_seconds: Wall-clock ceiling measured from the first poll
            interval_seconds: Fixed delay between polls
            stop_event: Optional event that interrupts the wait when set
            fetch_message: Attach the job's activity message on completion
            operation_name: Operation name for logging

        Returns:
            JobResult for COMPLETE, ERROR or STALLED jobs

        Raises:
            UnsupportedOperationError: If the handle is a schedule
            ValidationError: If the handle is not a job URI
            OperationTimeoutError: If no terminal state is reached in time
            WaitInterruptedError: If stop_event is set
        """
        job_uri = self.resolve_handle(job_handle)

        start_time = self.clock()
        last_percent = -1

        while True:
            if stop_event is not None and stop_event.is_set():
                raise WaitInterruptedError(f"{operation_name} wait on {job_uri} was interrupted")

            job = self.fetch_job(job_uri, operation_name)

            if job.is_terminal:
                self.logger.info(f"{operation_name} finished: {job.state.value} ({job_uri})")
                message = self.fetch_activity_message(job_uri) if fetch_message else None
                return JobResult.from_job(job, message=message)

            elapsed = self.clock() - start_time
            if elapsed >= timeout_seconds:
                raise OperationTimeoutError(
                    f"{operation_name} timed out after {timeout_seconds} seconds "
                    f"(last state: {job.state.value})",
                    timeout_seconds=timeout_seconds,
                )

            percent = int(elapsed * 100 / timeout_seconds) if timeout_seconds > 0 else 0
            if percent != last_percent:
                self.logger.debug(f"{operation_name} progress: {percent}% of timeout - {job.state.value}")
                last_percent = percent

            self.sleep(interval_seconds)
