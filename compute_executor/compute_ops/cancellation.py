"""Cancellation of in-flight jobs"""

import logging
from typing import Optional, Union

from ..config import DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT
from .errors import ErrorCodes, UnsupportedOperationError
from .models import Job, JobResult, JobState
from .poller import JobPoller

STOP_ON_REQUEST_PAYLOAD = {"input": {"stopOnRequest": True}}


class CancellationGuard:
    """
    Requests that the service stop a serial job.

    The request is cooperative: the service decides when, or whether, the
    job leaves its current state.
    """

    def __init__(self, adapter, poller: Optional[JobPoller] = None, logger: Optional[logging.Logger] = None):
        self.adapter = adapter
        self.logger = logger or logging.getLogger(__name__)
        self.poller = poller or JobPoller(adapter, logger=self.logger)

    def check(self, job: Job):
        """
        Raise if the job may not be cancelled.

        Raises:
            UnsupportedOperationError: Job already complete, or running in parallel mode
        """
        if job.state == JobState.COMPLETE:
            raise UnsupportedOperationError(
                f"Job {job.id} is already complete and cannot be cancelled",
                error_code=ErrorCodes.ALREADY_COMPLETE,
            )
        if job.is_parallel:
            raise UnsupportedOperationError(
                f"Job {job.id} runs in parallel mode; only serial group jobs can be stopped",
                error_code=ErrorCodes.PARALLEL_NOT_CANCELLABLE,
            )

    def cancel(
        self,
        job: Union[Job, str],
        wait: bool = False,
        timeout_seconds: float = DEFAULT_WAIT_TIMEOUT,
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
    ) -> JobResult:
        """
        Request a stop of a running serial job.

        Args:
            job: Job, or the job's resource URI (fetched first)
            wait: Wait for the job to reach a terminal state afterwards
            timeout_seconds: Wait ceiling when wait is True
            interval_seconds: Poll interval when wait is True

        Returns:
            JobResult from the wait, or built from the PATCH response

        Raises:
            UnsupportedOperationError: If the job may not be cancelled
            ValidationError: If a string handle is not a job URI
        """
        if isinstance(job, str):
            job = self.poller.fetch_job(self.poller.resolve_handle(job), operation_name="Cancel Job")

        self.check(job)

        job_uri = self.poller.resolve_handle(job)
        self.logger.info(f"Requesting stop of job {job.id}")
        response = self.adapter.make_request(
            method='PATCH',
            endpoint=job_uri,
            payload=STOP_ON_REQUEST_PAYLOAD,
            operation_name="Cancel Job",
        )

        if wait:
            return self.poller.wait(
                job_uri,
                timeout_seconds=timeout_seconds,
                interval_seconds=interval_seconds,
                operation_name="Cancel Job",
            )

        if isinstance(response, dict) and response.get("state"):
            return JobResult.from_job(Job.model_validate({"resourceUri": job_uri, "id": job.id, **response}))
        return JobResult.from_job(job)
