import random
import unittest
from datetime import timedelta

from compute_executor.compute_ops.errors import ErrorCodes, ValidationError
from compute_executor.compute_ops.models import ExecutionMode, OperationRequest, SchedulePurpose
from compute_executor.compute_ops.request_builder import RequestBuilder
from compute_executor.compute_ops.schedules import ScheduleCompiler
from compute_executor.tests.fakes import NOW, make_catalog


class RequestBuilderTests(unittest.TestCase):
    def setUp(self):
        catalog = make_catalog()
        compiler = ScheduleCompiler(catalog, rng=random.Random(1), now_fn=lambda: NOW)
        self.builder = RequestBuilder(catalog, schedule_compiler=compiler, now_fn=lambda: NOW)

    def test_immediate_request_builds_job_submission(self):
        request = OperationRequest(
            template_id="FirmwareUpdate.New",
            target_resource_id="srv-1",
            parameters={"bundle_id": "b-1"},
        )

        payload = self.builder.build(request)

        self.assertEqual(payload.kind, "job")
        self.assertEqual(payload.endpoint, "/compute-ops-mgmt/v1/jobs")
        self.assertEqual(payload.body, {
            "jobTemplate": "tmpl-3",
            "resourceId": "srv-1",
            "resourceType": "compute-ops-mgmt/server",
            "jobParams": {"bundle_id": "b-1"},
        })

    def test_unknown_template_rejected(self):
        request = OperationRequest(template_id="Nope.New", target_resource_id="srv-1")
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(request)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.UNKNOWN_JOB_TEMPLATE)

    def test_scheduled_request_delegates_to_compiler(self):
        request = OperationRequest(
            template_id="GroupFirmwareUpdate",
            target_resource_id="grp-1",
            target_resource_type="compute-ops-mgmt/group",
            parameters={"bundle_id": "b-1", "parallel": True},
            execution_mode=ExecutionMode.SCHEDULED,
            schedule_time=NOW + timedelta(days=1),
            interval="P1W",
            target_name="Rack42",
        )

        payload = self.builder.build(request)

        self.assertEqual(payload.kind, "schedule")
        self.assertEqual(payload.body["purpose"], SchedulePurpose.GROUP_FW_UPDATE.value)
        self.assertEqual(payload.body["associatedResourceUri"], "/compute-ops-mgmt/v1/groups/grp-1")
        self.assertEqual(payload.body["schedule"]["interval"], "P1W")
        self.assertEqual(payload.body["operation"]["body"]["data"], {"bundle_id": "b-1", "parallel": True})
        self.assertTrue(payload.body["name"].startswith("Rack42_GroupFwUpdate_Schedule_"))

    def test_scheduled_window_enforced(self):
        cases = [
            (NOW - timedelta(seconds=1), None, ErrorCodes.SCHEDULE_WINDOW_EXCEEDED),
            (NOW + timedelta(days=366), None, ErrorCodes.SCHEDULE_WINDOW_EXCEEDED),
            (NOW + timedelta(hours=1), "PT14M", ErrorCodes.INVALID_INTERVAL),
            (NOW + timedelta(hours=1), "P1Y1D", ErrorCodes.INVALID_INTERVAL),
            (None, None, ErrorCodes.SCHEDULE_TIME_REQUIRED),
        ]
        for schedule_time, interval, code in cases:
            request = OperationRequest(
                template_id="PowerOn.New",
                target_resource_id="srv-1",
                execution_mode=ExecutionMode.SCHEDULED,
                schedule_time=schedule_time,
                interval=interval,
            )
            with self.subTest(schedule_time=schedule_time, interval=interval):
                with self.assertRaises(ValidationError) as ctx:
                    self.builder.build(request)
                self.assertEqual(ctx.exception.error_code, code)

    def test_scheduled_boundaries_accepted(self):
        for schedule_time, interval in ((NOW, "PT15M"), (NOW + timedelta(days=365), "P1Y")):
            request = OperationRequest(
                template_id="PowerOn.New",
                target_resource_id="srv-1",
                execution_mode=ExecutionMode.SCHEDULED,
                schedule_time=schedule_time,
                interval=interval,
            )
            self.assertEqual(self.builder.build(request).kind, "schedule")

    def test_request_is_immutable(self):
        parameters = {"bundle_id": "b-1", "components": ["bios"]}
        request = OperationRequest(template_id="PowerOn.New", target_resource_id="srv-1", parameters=parameters)
        with self.assertRaises(Exception):
            request.template_id = "PowerOff.New"
        with self.assertRaises(TypeError):
            request.parameters["bundle_id"] = "b-2"

        parameters["bundle_id"] = "b-3"
        parameters["components"].append("ilo")
        self.assertEqual(request.parameters["bundle_id"], "b-1")
        self.assertEqual(request.parameters["components"], ["bios"])

        bare = OperationRequest(template_id="PowerOn.New", target_resource_id="srv-1")
        with self.assertRaises(TypeError):
            bare.parameters["force"] = True

    def test_built_payload_does_not_share_parameters(self):
        request = OperationRequest(
            template_id="FirmwareUpdate.New",
            target_resource_id="srv-1",
            parameters={"components": ["bios"]},
        )

        payload = self.builder.build(request)
        payload.body["jobParams"]["components"].append("ilo")

        self.assertEqual(request.parameters["components"], ["bios"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
