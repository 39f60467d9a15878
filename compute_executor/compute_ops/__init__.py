"""
Compute Ops Orchestration Module

Submits server and group operations to the Compute Ops REST API either
immediately or as schedules, waits on the resulting jobs, plans group-wide
execution and guards job cancellation.

All calls go through ComputeOpsAdapter for:
- Circuit breaking per region
- Logging of every API call
- Structured error mapping
"""

__version__ = "1.0.0"

from .adapter import ComputeOpsAdapter
from .cancellation import CancellationGuard
from .errors import (
    CircuitBreakerOpenError,
    ComputeOpsError,
    ErrorCodes,
    NotFoundError,
    OperationTimeoutError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
    WaitInterruptedError,
    map_api_error,
)
from .groups import GroupExecutionPlanner
from .models import (
    ExecutionMode,
    Group,
    GroupExecutionPlan,
    GroupMember,
    Job,
    JobResult,
    JobState,
    JobTemplate,
    JobTemplateCatalog,
    OperationRequest,
    ResultCode,
    Schedule,
    SchedulePurpose,
    SubmissionPayload,
    resource_from_payload,
)
from .operations import ComputeOperations, load_job_templates
from .poller import JobPoller
from .request_builder import RequestBuilder
from .retry import RetryCoordinator
from .schedules import ScheduleCompiler

__all__ = [
    "CancellationGuard",
    "CircuitBreakerOpenError",
    "ComputeOperations",
    "ComputeOpsAdapter",
    "ComputeOpsError",
    "ErrorCodes",
    "ExecutionMode",
    "Group",
    "GroupExecutionPlan",
    "GroupExecutionPlanner",
    "GroupMember",
    "Job",
    "JobPoller",
    "JobResult",
    "JobState",
    "JobTemplate",
    "JobTemplateCatalog",
    "NotFoundError",
    "OperationRequest",
    "OperationTimeoutError",
    "RequestBuilder",
    "ResultCode",
    "RetryCoordinator",
    "Schedule",
    "ScheduleCompiler",
    "SchedulePurpose",
    "SubmissionPayload",
    "TransportError",
    "UnsupportedOperationError",
    "ValidationError",
    "WaitInterruptedError",
    "load_job_templates",
    "map_api_error",
    "resource_from_payload",
]
