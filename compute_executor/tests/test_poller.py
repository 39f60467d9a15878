import threading
import unittest

from compute_executor.compute_ops.errors import (
    ErrorCodes,
    OperationTimeoutError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
    WaitInterruptedError,
)
from compute_executor.compute_ops.endpoints import activities_for
from compute_executor.compute_ops.models import Job, JobState, ResultCode, Schedule
from compute_executor.compute_ops.poller import JobPoller
from compute_executor.tests.fakes import JOB_URI, FakeClock, FakeTransport, job_payload


class JobPollerTests(unittest.TestCase):
    def setUp(self):
        self.transport = FakeTransport()
        self.clock = FakeClock()
        self.poller = JobPoller(self.transport, clock=self.clock, sleep=self.clock.sleep)

    def test_polls_until_terminal_state(self):
        """Pending, Pending, Running, Complete takes exactly four job reads."""
        self.transport.add(
            "GET", JOB_URI,
            job_payload("PENDING"),
            job_payload("PENDING"),
            job_payload("RUNNING"),
            job_payload("COMPLETE", "SUCCESS"),
        )
        self.transport.add("GET", activities_for(JOB_URI), {"items": [{"formattedMessage": "Power on done"}]})

        result = self.poller.wait(JOB_URI, interval_seconds=0)

        self.assertEqual(len(self.transport.calls_for("GET", JOB_URI)), 4)
        self.assertEqual(result.state, JobState.COMPLETE)
        self.assertEqual(result.result_code, ResultCode.SUCCESS)
        self.assertEqual(result.duration_seconds, 150)
        self.assertEqual(result.message, "Power on done")

    def test_times_out_when_never_terminal(self):
        self.transport.add("GET", JOB_URI, job_payload("RUNNING"))

        with self.assertRaises(OperationTimeoutError) as ctx:
            self.poller.wait(JOB_URI, timeout_seconds=1, interval_seconds=1)

        self.assertEqual(ctx.exception.error_code, ErrorCodes.OPERATION_TIMEOUT)
        self.assertEqual(self.clock.now, 1)
        self.assertEqual(len(self.transport.calls_for("GET", JOB_URI)), 2)

    def test_error_and_stalled_are_returned_not_raised(self):
        for state in ("ERROR", "STALLED"):
            transport = FakeTransport().add("GET", JOB_URI, job_payload(state, "FAILURE"))
            poller = JobPoller(transport, clock=self.clock, sleep=self.clock.sleep)

            result = poller.wait(JOB_URI, interval_seconds=0, fetch_message=False)

            self.assertEqual(result.state, JobState(state.capitalize()))
            self.assertEqual(result.result_code, ResultCode.FAILURE)
            self.assertFalse(result.succeeded)

    def test_missing_timestamps_give_zero_duration(self):
        self.transport.add("GET", JOB_URI, job_payload("COMPLETE", "SUCCESS", createdAt=None))

        result = self.poller.wait(JOB_URI, fetch_message=False)

        self.assertEqual(result.duration_seconds, 0)

    def test_message_lookup_failure_is_ignored(self):
        self.transport.add("GET", JOB_URI, job_payload("COMPLETE", "SUCCESS", statusDetails="Done"))
        self.transport.add("GET", activities_for(JOB_URI), TransportError("boom", status_code=500))

        result = self.poller.wait(JOB_URI)

        self.assertEqual(result.state, JobState.COMPLETE)
        self.assertEqual(result.message, "Done")

    def test_unexpected_activity_items_give_no_message(self):
        self.transport.add("GET", JOB_URI, job_payload("COMPLETE", "SUCCESS", statusDetails="Done"))
        self.transport.add("GET", activities_for(JOB_URI), {"items": ["text"]})

        result = self.poller.wait(JOB_URI)

        self.assertEqual(result.state, JobState.COMPLETE)
        self.assertEqual(result.message, "Done")

    def test_schedule_handles_rejected_before_io(self):
        schedule = Schedule(id="s-1", resource_uri="/compute-ops-mgmt/v1beta2/schedules/s-1")
        handles = [
            schedule,
            "/compute-ops-mgmt/v1beta2/schedules/s-1",
            {"type": "compute-ops-mgmt/schedule", "resourceUri": "/compute-ops-mgmt/v1beta2/schedules/s-1"},
        ]
        for handle in handles:
            with self.assertRaises(UnsupportedOperationError) as ctx:
                self.poller.wait(handle)
            self.assertEqual(ctx.exception.error_code, ErrorCodes.WAIT_ON_SCHEDULE)
        self.assertEqual(self.transport.calls, [])

    def test_invalid_handles_rejected_before_io(self):
        for handle in ("job-1", "/compute-ops-mgmt/v2/jobs/job-1", "/compute-ops-mgmt/v1/servers/x", 42, None):
            with self.assertRaises(ValidationError) as ctx:
                self.poller.wait(handle)
            self.assertEqual(ctx.exception.error_code, ErrorCodes.INVALID_JOB_HANDLE)
        self.assertEqual(self.transport.calls, [])

    def test_both_job_prefixes_and_job_values_accepted(self):
        legacy_uri = "/compute-ops-mgmt/v1beta3/jobs/job-9"
        self.assertEqual(self.poller.resolve_handle(legacy_uri), legacy_uri)
        self.assertEqual(self.poller.resolve_handle(JOB_URI), JOB_URI)

        job = Job.model_validate(job_payload("RUNNING"))
        self.assertEqual(self.poller.resolve_handle(job), JOB_URI)
        self.assertEqual(self.poller.resolve_handle(job_payload("RUNNING")), JOB_URI)

    def test_stop_event_interrupts_wait(self):
        stop = threading.Event()
        self.transport.add("GET", JOB_URI, job_payload("RUNNING"))

        def sleep_and_stop(seconds):
            self.clock.sleep(seconds)
            stop.set()

        poller = JobPoller(self.transport, clock=self.clock, sleep=sleep_and_stop)

        with self.assertRaises(WaitInterruptedError):
            poller.wait(JOB_URI, timeout_seconds=60, interval_seconds=5, stop_event=stop)

        self.assertEqual(len(self.transport.calls_for("GET", JOB_URI)), 1)

    def test_malformed_job_payload_is_transport_error(self):
        self.transport.add("GET", JOB_URI, {"id": "job-1", "state": "EXPLODED"})

        with self.assertRaises(TransportError) as ctx:
            self.poller.wait(JOB_URI)

        self.assertEqual(ctx.exception.kind, ErrorCodes.INVALID_RESPONSE)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
