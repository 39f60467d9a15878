"""
Compute Ops Operations Module

Provides high-level operations for servers and groups using the Compute Ops
REST API. All operations go through ComputeOpsAdapter for circuit breaking,
logging, and error mapping, and share one set of orchestration components.
"""

import logging
import random
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config import DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT, GROUP_MEMBER_TIMEOUT, Settings
from ..session_manager import SessionManager
from ..utils import utc_now
from . import endpoints
from .adapter import ComputeOpsAdapter
from .cancellation import CancellationGuard
from .errors import ErrorCodes, TransportError, describe_error, is_collection_missing_error
from .groups import GroupExecutionPlanner
from .models import (
    ExecutionMode,
    Group,
    Job,
    JobResult,
    JobTemplateCatalog,
    OperationRequest,
    Schedule,
    resource_from_payload,
)
from .poller import JobPoller
from .request_builder import RequestBuilder
from .retry import RetryCoordinator
from .schedules import ScheduleCompiler

POWER_ON_TEMPLATE = "PowerOn.New"
POWER_OFF_TEMPLATE = "PowerOff.New"
RESTART_TEMPLATE = "Restart.New"
FIRMWARE_UPDATE_TEMPLATE = "FirmwareUpdate.New"
GROUP_FIRMWARE_UPDATE_TEMPLATE = "GroupFirmwareUpdate"
EXTERNAL_STORAGE_TEMPLATE = "GetExternalStorageDetails"

# Template -> (power state that makes the job pointless, outcome text)
POWER_STATE_GUARDS = {
    POWER_ON_TEMPLATE: ("ON", "already on"),
    POWER_OFF_TEMPLATE: ("OFF", "already off"),
}


def load_job_templates(adapter) -> JobTemplateCatalog:
    """
    Build the job template catalog from the job-templates listing.

    Args:
        adapter: Transport exposing make_request()

    Returns:
        JobTemplateCatalog
    """
    response = adapter.make_request(
        method='GET',
        endpoint=endpoints.JOB_TEMPLATES_ENDPOINT,
        operation_name='List Job Templates',
    )
    return JobTemplateCatalog.from_api(response.get('items', []))


def server_power_state(server: Dict[str, Any]) -> Optional[str]:
    hardware = server.get('hardware') or {}
    state = hardware.get('powerState') or server.get('powerState')
    return str(state).upper() if state else None


def server_display_name(server: Dict[str, Any]) -> str:
    hardware = server.get('hardware') or {}
    return server.get('name') or hardware.get('serialNumber') or server.get('id', 'unknown')


class ComputeOperations:
    """
    High-level server and group operations.

    Immediate requests are submitted as jobs and, unless told otherwise,
    waited on; scheduled requests are submitted as schedules and returned
    as-is.
    """

    def __init__(
        self,
        adapter,
        catalog: JobTemplateCatalog,
        logger: Optional[logging.Logger] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        now_fn: Callable[[], datetime] = utc_now,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        settle_delay_seconds: Optional[float] = None,
        group_member_timeout: int = GROUP_MEMBER_TIMEOUT,
    ):
        """
        Initialize operations with an adapter and the job template catalog.

        Args:
            adapter: Transport exposing make_request()
            catalog: Job template lookup
            logger: Logger for operation output
            poll_interval: Default seconds between job polls
            wait_timeout: Default wait ceiling for single-resource jobs
            now_fn: Wall clock used for schedule windows
            clock: Monotonic clock used for job waits
            sleep: Sleep used by job waits and the collection settle delay
            rng: Random source for schedule names
            settle_delay_seconds: Delay after a collection job before re-reading
            group_member_timeout: Default per-member budget for group jobs
        """
        self.adapter = adapter
        self.catalog = catalog
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout
        self.group_member_timeout = group_member_timeout

        self.schedule_compiler = ScheduleCompiler(catalog, rng=rng, now_fn=now_fn)
        self.request_builder = RequestBuilder(catalog, schedule_compiler=self.schedule_compiler, now_fn=now_fn)
        self.poller = JobPoller(adapter, logger=self.logger, clock=clock, sleep=sleep)
        self.planner = GroupExecutionPlanner(logger=self.logger)
        self.cancellation = CancellationGuard(adapter, poller=self.poller, logger=self.logger)
        retry_kwargs: Dict[str, Any] = {'logger': self.logger, 'sleep': sleep}
        if settle_delay_seconds is not None:
            retry_kwargs['settle_delay_seconds'] = settle_delay_seconds
        self.retry = RetryCoordinator(**retry_kwargs)

    @classmethod
    def from_settings(cls, settings: Settings, logger: Optional[logging.Logger] = None) -> "ComputeOperations":
        """Wire a session, adapter and template catalog from settings."""
        session_manager = SessionManager(
            access_token=settings.access_token,
            verify_ssl=settings.verify_ssl,
            circuit_breaker_threshold=settings.circuit_breaker_threshold,
            circuit_breaker_timeout=settings.circuit_breaker_timeout,
        )
        adapter = ComputeOpsAdapter(
            session_manager=session_manager,
            region=settings.region,
            logger=logger,
            base_url=settings.base_url,
            timeout=(settings.connect_timeout, settings.read_timeout),
        )
        return cls(
            adapter,
            load_job_templates(adapter),
            logger=logger,
            poll_interval=settings.poll_interval,
            wait_timeout=settings.wait_timeout,
            settle_delay_seconds=settings.collection_settle_delay,
            group_member_timeout=settings.group_member_timeout,
        )

    # Lookups

    def get_server(self, server_id: str) -> Dict[str, Any]:
        return self.adapter.make_request(
            method='GET',
            endpoint=endpoints.server_uri(server_id),
            operation_name='Get Server',
        )

    def get_group(self, group_id: str) -> Group:
        """Fetch a group with its member devices."""
        group_uri = f"{endpoints.GROUPS_ENDPOINT}/{group_id}"
        data = self.adapter.make_request(method='GET', endpoint=group_uri, operation_name='Get Group')
        if 'devices' not in data:
            devices = self.adapter.make_request(
                method='GET',
                endpoint=f"{group_uri}/devices",
                operation_name='Get Group Devices',
            )
            data = {**data, 'devices': devices.get('items', [])}
        return Group.model_validate(data)

    def get_job(self, job_uri: str) -> Job:
        return self.poller.fetch_job(self.poller.resolve_handle(job_uri), operation_name='Get Job')

    def get_schedule(self, schedule_id: str) -> Schedule:
        data = self.adapter.make_request(
            method='GET',
            endpoint=endpoints.schedule_uri(schedule_id),
            operation_name='Get Schedule',
        )
        return self._expect_schedule(resource_from_payload(data))

    def list_schedules(self) -> List[Schedule]:
        data = self.adapter.make_request(
            method='GET',
            endpoint=endpoints.SCHEDULES_ENDPOINT,
            operation_name='List Schedules',
        )
        return [self._expect_schedule(resource_from_payload(item)) for item in data.get('items', [])]

    def delete_schedule(self, schedule_id: str):
        self.adapter.make_request(
            method='DELETE',
            endpoint=endpoints.schedule_uri(schedule_id),
            operation_name='Delete Schedule',
        )
        self.logger.info(f"Schedule {schedule_id} deleted")

    @staticmethod
    def _expect_schedule(resource: Union[Job, Schedule]) -> Schedule:
        if not isinstance(resource, Schedule):
            raise TransportError(
                f"Expected a schedule, got job {resource.id}",
                kind=ErrorCodes.INVALID_RESPONSE,
            )
        return resource

    # Submission

    def submit(self, request: OperationRequest) -> Union[Job, Schedule]:
        """
        Build and POST a request.

        Returns:
            The created Job (immediate) or Schedule (scheduled)
        """
        payload = self.request_builder.build(request)
        response = self.adapter.make_request(
            method='POST',
            endpoint=payload.endpoint,
            payload=payload.body,
            operation_name=f"Submit {request.template_id}",
        )
        resource = resource_from_payload(response)
        self.logger.info(f"{request.template_id} submitted for {request.target_resource_id}: {resource.resource_uri}")
        return resource

    def run(
        self,
        request: OperationRequest,
        wait: bool = True,
        timeout_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Union[JobResult, Job, Schedule]:
        """
        Submit a request and, for immediate jobs, wait for a terminal state.

        Immediate power requests whose target is already in the requested
        state return a Failure JobResult without submitting anything.

        Args:
            request: Operation to run
            wait: Wait on immediate jobs
            timeout_seconds: Wait ceiling, defaults to the configured wait timeout
            interval_seconds: Poll interval, defaults to the configured poll interval
            stop_event: Interrupts the wait when set

        Returns:
            JobResult when waited on, otherwise the created Job or Schedule
        """
        if request.execution_mode == ExecutionMode.IMMEDIATE:
            short_circuit = self._check_power_state(request)
            if short_circuit is not None:
                return short_circuit

        resource = self.submit(request)
        if isinstance(resource, Schedule) or not wait:
            return resource

        return self.poller.wait(
            resource,
            timeout_seconds=timeout_seconds if timeout_seconds is not None else self.wait_timeout,
            interval_seconds=interval_seconds if interval_seconds is not None else self.poll_interval,
            stop_event=stop_event,
            operation_name=request.template_id,
        )

    def _check_power_state(self, request: OperationRequest) -> Optional[JobResult]:
        guard = POWER_STATE_GUARDS.get(request.template_id)
        if guard is None or request.target_resource_type != endpoints.SERVER_RESOURCE_TYPE:
            return None

        blocking_state, outcome = guard
        server = self.get_server(request.target_resource_id)
        if server_power_state(server) != blocking_state:
            return None

        message = f"Server '{server_display_name(server)}' is {outcome}"
        self.logger.warning(f"{request.template_id} skipped: {message}")
        return JobResult.short_circuit(message)

    # Server operations

    def _server_request(
        self,
        template_id: str,
        server_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        schedule_time: Optional[datetime] = None,
        interval: Optional[str] = None,
        target_name: Optional[str] = None,
    ) -> OperationRequest:
        return OperationRequest(
            template_id=template_id,
            target_resource_id=server_id,
            target_resource_type=endpoints.SERVER_RESOURCE_TYPE,
            parameters=parameters or {},
            execution_mode=ExecutionMode.SCHEDULED if schedule_time else ExecutionMode.IMMEDIATE,
            schedule_time=schedule_time,
            interval=interval,
            target_name=target_name,
        )

    def power_on(self, server_id: str, schedule_time: Optional[datetime] = None,
                 interval: Optional[str] = None, wait: bool = True, **wait_kwargs):
        request = self._server_request(POWER_ON_TEMPLATE, server_id, schedule_time=schedule_time, interval=interval)
        return self.run(request, wait=wait, **wait_kwargs)

    def power_off(self, server_id: str, force: bool = False, schedule_time: Optional[datetime] = None,
                  interval: Optional[str] = None, wait: bool = True, **wait_kwargs):
        parameters = {'powerOffType': 'FORCE' if force else 'GRACEFUL'}
        request = self._server_request(
            POWER_OFF_TEMPLATE, server_id, parameters, schedule_time=schedule_time, interval=interval
        )
        return self.run(request, wait=wait, **wait_kwargs)

    def restart(self, server_id: str, schedule_time: Optional[datetime] = None,
                interval: Optional[str] = None, wait: bool = True, **wait_kwargs):
        request = self._server_request(RESTART_TEMPLATE, server_id, schedule_time=schedule_time, interval=interval)
        return self.run(request, wait=wait, **wait_kwargs)

    def update_server_firmware(
        self,
        server_id: str,
        bundle_id: str,
        allow_downgrade: bool = False,
        install_sw_drivers: bool = False,
        schedule_time: Optional[datetime] = None,
        interval: Optional[str] = None,
        wait: bool = True,
        **wait_kwargs,
    ):
        """Update one server to a firmware bundle."""
        parameters = {
            'bundle_id': bundle_id,
            'downgrade': allow_downgrade,
            'install_SW_drivers': install_sw_drivers,
        }
        request = self._server_request(
            FIRMWARE_UPDATE_TEMPLATE, server_id, parameters, schedule_time=schedule_time, interval=interval
        )
        return self.run(request, wait=wait, **wait_kwargs)

    # Group operations

    def update_group_firmware(
        self,
        group: Union[Group, str],
        bundle_id: str,
        members: Optional[Iterable[str]] = None,
        parallel: bool = True,
        stop_on_failure: bool = False,
        per_member_timeout_seconds: Optional[int] = None,
        allow_downgrade: bool = False,
        install_sw_drivers: bool = False,
        schedule_time: Optional[datetime] = None,
        interval: Optional[str] = None,
        wait: bool = True,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Update the firmware of a group's servers.

        Args:
            group: Group or group id
            bundle_id: Firmware bundle to apply
            members: Subset of member ids, names or serial numbers
            parallel: Update members concurrently on the service side
            stop_on_failure: Stop after the first failed member (serial only)
            per_member_timeout_seconds: Timeout budget for one member, defaults to the configured budget
            allow_downgrade: Allow downgrading components
            install_sw_drivers: Install software drivers as well
            schedule_time: Run later as a schedule instead of now
            interval: Recurrence period for scheduled runs
            wait: Wait on the immediate job
            interval_seconds: Poll interval for the wait
            stop_event: Interrupts the wait when set

        Returns:
            JobResult, Job or Schedule as for run()
        """
        if isinstance(group, str):
            group = self.get_group(group)

        plan = self.planner.plan(
            group,
            explicit_member_subset=members,
            parallel=parallel,
            stop_on_failure=stop_on_failure,
            per_member_timeout_seconds=(
                per_member_timeout_seconds if per_member_timeout_seconds is not None else self.group_member_timeout
            ),
        )
        parameters = plan.to_job_params(
            bundle_id=bundle_id,
            downgrade=allow_downgrade,
            install_SW_drivers=install_sw_drivers,
        )
        request = OperationRequest(
            template_id=GROUP_FIRMWARE_UPDATE_TEMPLATE,
            target_resource_id=group.id,
            target_resource_type=endpoints.GROUP_RESOURCE_TYPE,
            target_resource_uri=group.resource_uri,
            target_name=group.name or None,
            parameters=parameters,
            execution_mode=ExecutionMode.SCHEDULED if schedule_time else ExecutionMode.IMMEDIATE,
            schedule_time=schedule_time,
            interval=interval,
        )
        self.logger.info(
            f"Group firmware update on '{group.name or group.id}': {len(plan.member_ids)} member(s), "
            f"{'parallel' if plan.parallel else 'serial'}, timeout {plan.total_timeout_seconds}s"
        )
        return self.run(
            request,
            wait=wait,
            timeout_seconds=plan.total_timeout_seconds,
            interval_seconds=interval_seconds,
            stop_event=stop_event,
        )

    # Reads with collection fallback

    def get_external_storage_details(
        self,
        server_id: str,
        timeout_seconds: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Read a server's external storage details, collecting them first if needed.

        Returns:
            Storage details, or None when the collection job could not produce them
        """
        storage_uri = endpoints.external_storage_uri(server_id)

        def read() -> Dict[str, Any]:
            return self.adapter.make_request(
                method='GET',
                endpoint=storage_uri,
                operation_name='Get External Storage Details',
            )

        def collect() -> JobResult:
            request = self._server_request(EXTERNAL_STORAGE_TEMPLATE, server_id)
            job = self.submit(request)
            return self.poller.wait(
                job,
                timeout_seconds=timeout_seconds if timeout_seconds is not None else self.wait_timeout,
                interval_seconds=self.poll_interval,
                operation_name=EXTERNAL_STORAGE_TEMPLATE,
            )

        return self.retry.read_with_collection_fallback(read, is_collection_missing_error, collect, read)

    def close(self):
        close = getattr(self.adapter, 'close', None)
        if close is not None:
            close()

    # Cancellation

    def cancel_job(
        self,
        job: Union[Job, str],
        wait: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> JobResult:
        """Request a stop of a running serial job; see CancellationGuard."""
        try:
            return self.cancellation.cancel(
                job,
                wait=wait,
                timeout_seconds=timeout_seconds if timeout_seconds is not None else self.wait_timeout,
                interval_seconds=self.poll_interval,
            )
        except Exception as e:
            info = describe_error(e)
            self.logger.error(f"Cancel failed [{info['code']}]: {info['message']}")
            raise
