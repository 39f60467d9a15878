"""
Request building for mutating operations.

Turns an OperationRequest into the payload the caller submits through the
transport: a job submission for immediate requests, a schedule definition for
deferred ones. Nothing here performs I/O.
"""

import logging
import copy
from datetime import datetime
from typing import Callable, Optional

from ..utils import utc_now
from . import endpoints
from .models import ExecutionMode, JobTemplateCatalog, OperationRequest, SubmissionPayload
from .schedules import ScheduleCompiler, validate_interval, validate_schedule_time

logger = logging.getLogger(__name__)


class RequestBuilder:
    """Pure transform from OperationRequest to SubmissionPayload."""

    def __init__(
        self,
        catalog: JobTemplateCatalog,
        schedule_compiler: Optional[ScheduleCompiler] = None,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.catalog = catalog
        self.now_fn = now_fn
        self.schedule_compiler = schedule_compiler or ScheduleCompiler(catalog, now_fn=now_fn)

    def build(self, req: OperationRequest) -> SubmissionPayload:
        """
        Build the submission payload for a request.

        Args:
            req: Operation to submit

        Returns:
            SubmissionPayload for POST to the jobs or schedules endpoint

        Raises:
            ValidationError: Unknown template, out-of-window schedule time or bad interval
        """
        if req.execution_mode == ExecutionMode.SCHEDULED:
            return self._build_scheduled(req)

        template = self.catalog.get(req.template_id)
        body = {
            "jobTemplate": template.id,
            "resourceId": req.target_resource_id,
            "resourceType": req.target_resource_type,
            "jobParams": copy.deepcopy(dict(req.parameters)),
        }
        logger.debug(f"Built {template.name} job payload for {req.target_resource_id}")
        return SubmissionPayload(kind="job", endpoint=endpoints.JOBS_ENDPOINT, body=body)

    def _build_scheduled(self, req: OperationRequest) -> SubmissionPayload:
        now = self.now_fn()
        validate_schedule_time(req.schedule_time, now)
        validate_interval(req.interval)

        payload = self.schedule_compiler.compile(
            purpose=req.purpose,
            target_resource_uri=req.resolved_resource_uri(),
            template_id=req.template_id,
            parameters=req.parameters,
            start_at=req.schedule_time,
            interval=req.interval,
            target_name=req.target_name,
            description=req.description,
            now=now,
        )
        logger.debug(f"Built schedule payload {payload.body['name']} for {req.target_resource_id}")
        return payload
