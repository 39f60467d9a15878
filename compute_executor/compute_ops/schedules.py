"""
Schedule compilation for deferred and recurring operations.

A schedule is a persisted resource on the service side that performs a REST
call (a job submission) at `startAt` and then every `interval`.
"""

import copy
import random
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import SCHEDULE_MAX_INTERVAL, SCHEDULE_MAX_LEAD, SCHEDULE_MIN_INTERVAL
from ..utils import as_utc, format_iso_utc, utc_now
from . import endpoints
from .errors import ErrorCodes, ValidationError
from .models import JobTemplateCatalog, SchedulePurpose, SubmissionPayload

# Job template name -> purpose used when the caller does not pass one
DEFAULT_PURPOSES: Dict[str, SchedulePurpose] = {
    "PowerOn.New": SchedulePurpose.SERVER_POWER_ON,
    "PowerOff.New": SchedulePurpose.SERVER_POWER_OFF,
    "Restart.New": SchedulePurpose.SERVER_RESTART,
    "ColdBoot.New": SchedulePurpose.SERVER_COLD_BOOT,
    "FirmwareUpdate.New": SchedulePurpose.SERVER_FW_UPDATE,
    "IloOnlyFirmwareUpdate": SchedulePurpose.SERVER_ILO_FW_UPDATE,
    "ServerBiosResetToDefault": SchedulePurpose.SERVER_BIOS_RESET,
    "ConfigureiLOSettings": SchedulePurpose.SERVER_ILO_SETTINGS,
    "GetExternalStorageDetails": SchedulePurpose.SERVER_EXTERNAL_STORAGE_REFRESH,
    "GroupFirmwareUpdate": SchedulePurpose.GROUP_FW_UPDATE,
    "GroupOSInstallation": SchedulePurpose.GROUP_OS_INSTALL,
    "GroupApplyServerSettings": SchedulePurpose.GROUP_SERVER_SETTINGS,
    "GroupApplyInternalStorageSettings": SchedulePurpose.GROUP_INTERNAL_STORAGE,
    "GroupFirmwareCompliance": SchedulePurpose.GROUP_FW_COMPLIANCE,
}

_PERIOD_RE = re.compile(
    r"^P"
    r"(?:(?P<years>\d+)Y)?"
    r"(?:(?P<months>\d+)M)?"
    r"(?:(?P<weeks>\d+)W)?"
    r"(?:(?P<days>\d+)D)?"
    r"(?:T"
    r"(?:(?P<hours>\d+)H)?"
    r"(?:(?P<minutes>\d+)M)?"
    r"(?:(?P<seconds>\d+)S)?"
    r")?$"
)

# Calendar units are fixed-length: a year is 365 days, a month 30 days
_UNIT_SECONDS = {
    "years": 365 * 86400,
    "months": 30 * 86400,
    "weeks": 7 * 86400,
    "days": 86400,
    "hours": 3600,
    "minutes": 60,
    "seconds": 1,
}


def normalize_interval(interval: str) -> str:
    """p1d -> P1D"""
    return interval.strip().upper()


def parse_interval_seconds(interval: str) -> int:
    """
    Convert an ISO-8601 period (P[n]Y[n]M[n]W[n]DT[n]H[n]M[n]S) to seconds.

    Raises:
        ValidationError: If the string is not a well-formed period
    """
    text = normalize_interval(interval or "")
    match = _PERIOD_RE.match(text)
    if not match or text in ("P", "PT") or text.endswith("T"):
        raise ValidationError(
            f"Invalid interval {interval!r}: expected an ISO-8601 period such as PT15M, P1D or P1W",
            error_code=ErrorCodes.INVALID_INTERVAL,
        )
    return sum(int(value) * _UNIT_SECONDS[unit] for unit, value in match.groupdict().items() if value)


def validate_interval(interval: Optional[str]) -> Optional[int]:
    """
    Validate a recurrence interval against the 15 minute to 1 year window.

    Returns:
        Interval length in seconds, or None for one-shot schedules
    """
    if interval is None:
        return None
    seconds = parse_interval_seconds(interval)
    if not SCHEDULE_MIN_INTERVAL <= seconds <= SCHEDULE_MAX_INTERVAL:
        raise ValidationError(
            f"Invalid interval {interval!r}: must be between 15 minutes (PT15M) and 1 year (P1Y)",
            error_code=ErrorCodes.INVALID_INTERVAL,
        )
    return seconds


def validate_schedule_time(schedule_time: Optional[datetime], now: datetime) -> datetime:
    """
    Ensure a schedule start lies within [now, now + 365 days].

    Naive datetimes are interpreted as UTC.
    """
    if schedule_time is None:
        raise ValidationError(
            "A schedule time is required for scheduled operations",
            error_code=ErrorCodes.SCHEDULE_TIME_REQUIRED,
        )
    start_at = as_utc(schedule_time)
    now = as_utc(now)
    if start_at < now or start_at > now + timedelta(seconds=SCHEDULE_MAX_LEAD):
        raise ValidationError(
            f"Schedule time {format_iso_utc(start_at)} must be between now and one year from now",
            error_code=ErrorCodes.SCHEDULE_WINDOW_EXCEEDED,
        )
    return start_at


def purpose_suffix(purpose: SchedulePurpose) -> str:
    """SERVER_POWER_ON -> ServerPowerOn"""
    return "".join(part.capitalize() for part in purpose.value.split("_"))


def resolve_purpose(template_name: str, purpose: Optional[SchedulePurpose]) -> SchedulePurpose:
    if purpose is not None:
        return SchedulePurpose(purpose)
    default = DEFAULT_PURPOSES.get(template_name)
    if default is None:
        raise ValidationError(
            f"No schedule purpose known for job template {template_name}; pass one explicitly",
            error_code=ErrorCodes.PURPOSE_REQUIRED,
        )
    return default


class ScheduleCompiler:
    """Builds schedule payloads that submit a job when triggered."""

    def __init__(
        self,
        catalog: JobTemplateCatalog,
        rng: Optional[random.Random] = None,
        now_fn: Callable[[], datetime] = utc_now,
        jobs_endpoint: str = endpoints.JOBS_ENDPOINT,
    ):
        """
        Args:
            catalog: Job template lookup
            rng: Random source for the name suffix
            now_fn: Clock returning an aware datetime
            jobs_endpoint: Endpoint the scheduler POSTs to when triggered
        """
        self.catalog = catalog
        self.rng = rng or random.Random()
        self.now_fn = now_fn
        self.jobs_endpoint = jobs_endpoint

    def generate_name(self, target: str, purpose: SchedulePurpose) -> str:
        """
        Best-effort unique name; the service remains authoritative on collisions.
        """
        token = self.rng.randint(100000, 999999)
        return f"{target}_{purpose_suffix(purpose)}_Schedule_{token}"

    def compile(
        self,
        purpose: Optional[SchedulePurpose],
        target_resource_uri: str,
        template_id: str,
        parameters: Mapping[str, Any],
        start_at: datetime,
        interval: Optional[str] = None,
        target_name: Optional[str] = None,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubmissionPayload:
        """
        Build the payload to POST to the schedules endpoint.

        Args:
            purpose: Purpose tag, defaulted from the template when None
            target_resource_uri: Resource the scheduled job acts on
            template_id: Job template name
            parameters: Job parameters carried as the operation's `data`
            start_at: First execution time
            interval: ISO-8601 recurrence period, None for one-shot
            target_name: Human identifier used in name and description
            description: Overrides the generated description
            now: Reference time for the window check (defaults to now_fn())

        Returns:
            SubmissionPayload with kind "schedule"

        Raises:
            ValidationError: Out-of-window start, bad interval, unknown template
        """
        start_at = validate_schedule_time(start_at, now or self.now_fn())
        validate_interval(interval)
        template = self.catalog.get(template_id)
        purpose = resolve_purpose(template.name, purpose)

        target = target_name or target_resource_uri.rstrip("/").rsplit("/", 1)[-1]

        schedule_definition: Dict[str, Any] = {"startAt": format_iso_utc(start_at)}
        if interval is not None:
            schedule_definition["interval"] = normalize_interval(interval)

        body = {
            "name": self.generate_name(target, purpose),
            "description": description or f"Scheduled {template.name} job for '{target}'",
            "associatedResourceUri": target_resource_uri,
            "purpose": purpose.value,
            "schedule": schedule_definition,
            "operation": {
                "type": "REST",
                "method": "POST",
                "uri": self.jobs_endpoint,
                "body": {
                    "jobTemplateUri": template.resource_uri,
                    "resourceUri": target_resource_uri,
                    "data": copy.deepcopy(dict(parameters)),
                },
            },
        }

        return SubmissionPayload(kind="schedule", endpoint=endpoints.SCHEDULES_ENDPOINT, body=body)
