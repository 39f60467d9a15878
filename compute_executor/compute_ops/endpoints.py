"""Canonical Compute Ops REST endpoints used by the application.

Every path the engine is permitted to call lives here so the rest of the
codebase never drifts away from the supported API contract. Job handles are
accepted under both the current and the legacy API version prefix.
"""

import re

API_HOST_TEMPLATE = "https://{region}-api.compute.cloud.hpe.com"

JOBS_ENDPOINT = "/compute-ops-mgmt/v1/jobs"
LEGACY_JOBS_ENDPOINT = "/compute-ops-mgmt/v1beta3/jobs"
JOB_TEMPLATES_ENDPOINT = "/compute-ops-mgmt/v1/job-templates"
SCHEDULES_ENDPOINT = "/compute-ops-mgmt/v1beta2/schedules"
ACTIVITIES_ENDPOINT = "/compute-ops-mgmt/v1/activities"
SERVERS_ENDPOINT = "/compute-ops-mgmt/v1/servers"
GROUPS_ENDPOINT = "/compute-ops-mgmt/v1/groups"

# resourceType wire value -> collection endpoint
RESOURCE_ENDPOINTS = {
    "compute-ops-mgmt/server": SERVERS_ENDPOINT,
    "compute-ops-mgmt/group": GROUPS_ENDPOINT,
}

SERVER_RESOURCE_TYPE = "compute-ops-mgmt/server"
GROUP_RESOURCE_TYPE = "compute-ops-mgmt/group"
JOB_RESOURCE_TYPE = "compute-ops-mgmt/job"
SCHEDULE_RESOURCE_TYPE = "compute-ops-mgmt/schedule"

JOB_URI_PATTERNS = tuple(
    re.compile(rf"^{re.escape(prefix)}/[^/?#]+$")
    for prefix in (JOBS_ENDPOINT, LEGACY_JOBS_ENDPOINT)
)

SCHEDULE_URI_PATTERN = re.compile(r"^/compute-ops-mgmt/v1beta\d+/schedules/[^/?#]+$")


def is_job_uri(uri: str) -> bool:
    return any(pattern.match(uri) for pattern in JOB_URI_PATTERNS)


def is_schedule_uri(uri: str) -> bool:
    return bool(SCHEDULE_URI_PATTERN.match(uri))


def job_uri(job_id: str) -> str:
    return f"{JOBS_ENDPOINT}/{job_id}"


def schedule_uri(schedule_id: str) -> str:
    return f"{SCHEDULES_ENDPOINT}/{schedule_id}"


def server_uri(server_id: str) -> str:
    return f"{SERVERS_ENDPOINT}/{server_id}"


def external_storage_uri(server_id: str) -> str:
    return f"{SERVERS_ENDPOINT}/{server_id}/external-storage-details"


def resource_uri(resource_type: str, resource_id: str) -> str:
    """Canonical URI for a resource given its wire type."""
    endpoint = RESOURCE_ENDPOINTS.get(resource_type)
    if endpoint is None:
        raise KeyError(f"No endpoint registered for resource type {resource_type!r}")
    return f"{endpoint}/{resource_id}"


def job_template_uri(template_id: str) -> str:
    return f"{JOB_TEMPLATES_ENDPOINT}/{template_id}"


def activities_for(source_uri: str) -> str:
    """Activities filtered to a single source resource."""
    return f"{ACTIVITIES_ENDPOINT}?filter=source/resourceUri eq '{source_uri}'"
