"""
Pydantic models for Compute Ops jobs, schedules and orchestration values.
"""

import copy
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from ..utils import parse_iso_timestamp
from . import endpoints
from .errors import ErrorCodes, TransportError, ValidationError


class JobState(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETE = "Complete"
    ERROR = "Error"
    STALLED = "Stalled"

    @classmethod
    def parse(cls, value: Any) -> "JobState":
        """Wire values are upper-case (e.g. RUNNING); match case-insensitively."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown job state: {value!r}")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.ERROR, JobState.STALLED})


class ResultCode(str, Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"

    @classmethod
    def parse(cls, value: Any) -> Optional["ResultCode"]:
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        # Anything other than success is reported as a failure
        return cls.FAILURE


class ExecutionMode(str, Enum):
    IMMEDIATE = "Immediate"
    SCHEDULED = "Scheduled"


class SchedulePurpose(str, Enum):
    """Closed classification attached to schedules."""
    SERVER_POWER_ON = "SERVER_POWER_ON"
    SERVER_POWER_OFF = "SERVER_POWER_OFF"
    SERVER_RESTART = "SERVER_RESTART"
    SERVER_COLD_BOOT = "SERVER_COLD_BOOT"
    SERVER_FW_UPDATE = "SERVER_FW_UPDATE"
    SERVER_ILO_FW_UPDATE = "SERVER_ILO_FW_UPDATE"
    SERVER_BIOS_RESET = "SERVER_BIOS_RESET"
    SERVER_ILO_SETTINGS = "SERVER_ILO_SETTINGS"
    SERVER_EXTERNAL_STORAGE_REFRESH = "SERVER_EXTERNAL_STORAGE_REFRESH"
    GROUP_FW_UPDATE = "GROUP_FW_UPDATE"
    GROUP_OS_INSTALL = "GROUP_OS_INSTALL"
    GROUP_SERVER_SETTINGS = "GROUP_SERVER_SETTINGS"
    GROUP_INTERNAL_STORAGE = "GROUP_INTERNAL_STORAGE"
    GROUP_FW_COMPLIANCE = "GROUP_FW_COMPLIANCE"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Job(_WireModel):
    """Local mirror of a remote job resource."""
    type: Literal["compute-ops-mgmt/job"] = endpoints.JOB_RESOURCE_TYPE
    id: str
    resource_uri: str = Field(alias="resourceUri")
    state: JobState
    result_code: Optional[ResultCode] = Field(default=None, alias="resultCode")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    associated_resource_id: Optional[str] = Field(default=None, alias="associatedResourceId")
    job_params: Dict[str, Any] = Field(default_factory=dict, alias="jobParams")
    status: Optional[str] = None
    status_details: Optional[str] = Field(default=None, alias="statusDetails")
    message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["type"] = endpoints.JOB_RESOURCE_TYPE
        resource = data.get("resource")
        if "associated_resource_id" not in data and not data.get("associatedResourceId") and isinstance(resource, dict):
            data["associatedResourceId"] = resource.get("id")
        if "resource_uri" not in data and not data.get("resourceUri") and data.get("id"):
            data["resourceUri"] = endpoints.job_uri(data["id"])
        if "jobParams" in data and data["jobParams"] is None:
            data["jobParams"] = {}
        return data

    @field_validator("state", mode="before")
    @classmethod
    def _parse_state(cls, value: Any) -> JobState:
        return JobState.parse(value)

    @field_validator("result_code", mode="before")
    @classmethod
    def _parse_result_code(cls, value: Any) -> Optional[ResultCode]:
        return ResultCode.parse(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_iso_timestamp(value)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_parallel(self) -> bool:
        return bool(self.job_params.get("parallel"))


class ScheduleDefinition(_WireModel):
    start_at: Optional[datetime] = Field(default=None, alias="startAt")
    interval: Optional[str] = None

    @field_validator("start_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_iso_timestamp(value)


class ScheduledOperation(_WireModel):
    type: str = "REST"
    method: str = "POST"
    uri: str
    body: Dict[str, Any] = Field(default_factory=dict)


class Schedule(_WireModel):
    """Persisted remote schedule that performs a REST call when triggered."""
    type: Literal["compute-ops-mgmt/schedule"] = endpoints.SCHEDULE_RESOURCE_TYPE
    id: str
    resource_uri: str = Field(alias="resourceUri")
    name: str = ""
    description: Optional[str] = None
    purpose: Optional[str] = None
    associated_resource_uri: Optional[str] = Field(default=None, alias="associatedResourceUri")
    schedule: ScheduleDefinition = Field(default_factory=ScheduleDefinition)
    operation: Optional[ScheduledOperation] = None
    next_start_at: Optional[datetime] = Field(default=None, alias="nextStartAt")
    last_run: Optional[Dict[str, Any]] = Field(default=None, alias="lastRun")

    @field_validator("next_start_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_iso_timestamp(value)


RemoteResource = Annotated[Union[Job, Schedule], Field(discriminator="type")]
_remote_resource_adapter = TypeAdapter(RemoteResource)


def resource_from_payload(data: Dict[str, Any]) -> Union[Job, Schedule]:
    """
    Parse a job or schedule resource, checking the discriminant once.

    When the service omits `type`, it is inferred from the resource URI.

    Raises:
        TransportError: If the payload is neither a job nor a schedule
    """
    if not isinstance(data, dict):
        raise TransportError(
            f"Expected a JSON object, got {type(data).__name__}",
            kind=ErrorCodes.INVALID_RESPONSE,
        )

    resource_type = data.get("type")
    if resource_type not in (endpoints.JOB_RESOURCE_TYPE, endpoints.SCHEDULE_RESOURCE_TYPE):
        uri = data.get("resourceUri") or ""
        if endpoints.is_job_uri(uri):
            resource_type = endpoints.JOB_RESOURCE_TYPE
        elif endpoints.is_schedule_uri(uri):
            resource_type = endpoints.SCHEDULE_RESOURCE_TYPE
        else:
            raise TransportError(
                f"Cannot classify resource {uri or data.get('id')!r} as job or schedule",
                kind=ErrorCodes.INVALID_RESPONSE,
                response_body=data,
            )

    try:
        return _remote_resource_adapter.validate_python({**data, "type": resource_type})
    except ValueError as e:
        raise TransportError(
            f"Malformed {resource_type} payload: {e}",
            kind=ErrorCodes.INVALID_RESPONSE,
            response_body=data,
        )


class JobResult(BaseModel):
    """Outcome of a waited-on (or short-circuited) job."""
    state: Optional[JobState] = None
    result_code: Optional[ResultCode] = None
    duration_seconds: float = 0
    message: Optional[str] = None
    job: Optional[Job] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == ResultCode.SUCCESS

    @classmethod
    def from_job(cls, job: Job, message: Optional[str] = None) -> "JobResult":
        duration = 0.0
        if job.created_at is not None and job.updated_at is not None:
            duration = (job.updated_at - job.created_at).total_seconds()
        return cls(
            state=job.state,
            result_code=job.result_code,
            duration_seconds=duration,
            message=message if message is not None else (job.message or job.status_details),
            job=job,
        )

    @classmethod
    def short_circuit(cls, message: str) -> "JobResult":
        return cls(result_code=ResultCode.FAILURE, message=message)


class OperationRequest(BaseModel):
    """Immutable description of one mutating operation."""
    model_config = ConfigDict(frozen=True)

    template_id: str
    target_resource_id: str
    target_resource_type: str = endpoints.SERVER_RESOURCE_TYPE
    parameters: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    execution_mode: ExecutionMode = ExecutionMode.IMMEDIATE
    schedule_time: Optional[datetime] = None
    interval: Optional[str] = None

    # Scheduling extras
    target_name: Optional[str] = None
    target_resource_uri: Optional[str] = None
    purpose: Optional[SchedulePurpose] = None
    description: Optional[str] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _copy_parameters(cls, value: Any) -> Dict[str, Any]:
        return copy.deepcopy(dict(value or {}))

    @field_validator("parameters")
    @classmethod
    def _freeze_parameters(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    def resolved_resource_uri(self) -> str:
        if self.target_resource_uri:
            return self.target_resource_uri
        try:
            return endpoints.resource_uri(self.target_resource_type, self.target_resource_id)
        except KeyError:
            raise ValidationError(
                f"Unknown resource type {self.target_resource_type!r}; pass target_resource_uri explicitly",
                error_code=ErrorCodes.UNKNOWN_RESOURCE_TYPE,
            )


class SubmissionPayload(BaseModel):
    """Body and endpoint the caller POSTs through the transport."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["job", "schedule"]
    endpoint: str
    body: Dict[str, Any]


class JobTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    resource_uri: str


class JobTemplateCatalog:
    """
    Immutable name -> JobTemplate lookup.

    Built once from the job-templates listing and passed explicitly to the
    components that need it.
    """

    def __init__(self, templates: Iterable[JobTemplate]):
        self._by_name: Mapping[str, JobTemplate] = MappingProxyType({t.name: t for t in templates})

    @classmethod
    def from_api(cls, items: Iterable[Dict[str, Any]]) -> "JobTemplateCatalog":
        templates = []
        for item in items:
            template_id = item.get("id")
            name = item.get("name")
            if not template_id or not name:
                continue
            templates.append(JobTemplate(
                id=template_id,
                name=name,
                resource_uri=item.get("resourceUri") or endpoints.job_template_uri(template_id),
            ))
        return cls(templates)

    def get(self, name: str) -> JobTemplate:
        template = self._by_name.get(name)
        if template is None:
            raise ValidationError(f"Unknown job template: {name}", error_code=ErrorCodes.UNKNOWN_JOB_TEMPLATE)
        return template

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def names(self) -> List[str]:
        return sorted(self._by_name)


class GroupMember(_WireModel):
    id: str
    name: Optional[str] = None
    serial_number: Optional[str] = Field(default=None, alias="serialNumber")

    def matches(self, identifier: str) -> bool:
        return identifier in (self.id, self.name, self.serial_number)


class Group(_WireModel):
    id: str
    name: str = ""
    resource_uri: Optional[str] = Field(default=None, alias="resourceUri")
    members: List[GroupMember] = Field(default_factory=list, alias="devices")


class GroupExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    parallel: bool
    batch_size: int = Field(gt=0)
    stop_on_failure: bool
    member_ids: Tuple[str, ...]
    per_member_timeout_seconds: int = Field(gt=0)

    @property
    def total_timeout_seconds(self) -> int:
        """Serial members run back to back; parallel members share one ceiling."""
        if self.parallel:
            return self.per_member_timeout_seconds
        return self.per_member_timeout_seconds * len(self.member_ids)

    def to_job_params(self, **operation_fields: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "parallel": self.parallel,
            "batchSize": self.batch_size,
            "stopOnFailure": False if self.parallel else self.stop_on_failure,
            "devices": list(self.member_ids),
        }
        params.update(operation_fields)
        return params
