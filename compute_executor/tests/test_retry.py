import unittest
from unittest import mock

from compute_executor.compute_ops.errors import (
    ErrorCodes,
    NotFoundError,
    OperationTimeoutError,
    TransportError,
    is_collection_missing_error,
)
from compute_executor.compute_ops.models import Job, JobResult, JobState, ResultCode
from compute_executor.compute_ops.retry import RetryCoordinator
from compute_executor.tests.fakes import job_payload


def collection_missing():
    return TransportError(
        "External storage details not found. Run external storage details job",
        kind=ErrorCodes.COLLECTION_MISSING,
        status_code=404,
    )


class RetryCoordinatorTests(unittest.TestCase):
    def setUp(self):
        self.sleep = mock.Mock()
        self.coordinator = RetryCoordinator(settle_delay_seconds=5, sleep=self.sleep)

    def test_primary_success_skips_everything(self):
        trigger = mock.Mock()
        retry = mock.Mock()

        result = self.coordinator.read_with_collection_fallback(
            lambda: {"volumes": []}, is_collection_missing_error, trigger, retry
        )

        self.assertEqual(result, {"volumes": []})
        trigger.assert_not_called()
        retry.assert_not_called()

    def test_unrelated_error_propagates_unchanged(self):
        error = NotFoundError("server gone", status_code=404)
        primary = mock.Mock(side_effect=error)
        trigger = mock.Mock()

        with self.assertRaises(NotFoundError) as ctx:
            self.coordinator.read_with_collection_fallback(primary, is_collection_missing_error, trigger, mock.Mock())

        self.assertIs(ctx.exception, error)
        trigger.assert_not_called()

    def test_collection_then_single_retry(self):
        primary = mock.Mock(side_effect=collection_missing())
        trigger = mock.Mock(return_value=JobResult(state=JobState.COMPLETE, result_code=ResultCode.SUCCESS))
        retry = mock.Mock(return_value={"volumes": ["v1"]})

        result = self.coordinator.read_with_collection_fallback(primary, is_collection_missing_error, trigger, retry)

        self.assertEqual(result, {"volumes": ["v1"]})
        trigger.assert_called_once_with()
        retry.assert_called_once_with()
        self.sleep.assert_called_once_with(5)

    def test_retry_failure_is_not_retried_again(self):
        primary = mock.Mock(side_effect=collection_missing())
        trigger = mock.Mock(return_value=JobResult(state=JobState.COMPLETE, result_code=ResultCode.SUCCESS))
        retry = mock.Mock(side_effect=collection_missing())

        with self.assertRaises(TransportError):
            self.coordinator.read_with_collection_fallback(primary, is_collection_missing_error, trigger, retry)

        self.assertEqual(primary.call_count, 1)
        self.assertEqual(trigger.call_count, 1)
        self.assertEqual(retry.call_count, 1)

    def test_failed_collection_job_returns_no_data(self):
        primary = mock.Mock(side_effect=collection_missing())
        trigger = mock.Mock(return_value=JobResult(state=JobState.ERROR, result_code=ResultCode.FAILURE))
        retry = mock.Mock()

        with self.assertLogs("compute_executor.compute_ops.retry", level="WARNING"):
            result = self.coordinator.read_with_collection_fallback(
                primary, is_collection_missing_error, trigger, retry
            )

        self.assertIsNone(result)
        retry.assert_not_called()

    def test_resource_not_in_correct_state_returns_no_data(self):
        job = Job.model_validate(job_payload(
            "COMPLETE", "SUCCESS", statusDetails="Server is not in the correct state to run this job"
        ))
        primary = mock.Mock(side_effect=collection_missing())
        retry = mock.Mock()

        result = self.coordinator.read_with_collection_fallback(
            primary, is_collection_missing_error, mock.Mock(return_value=JobResult.from_job(job)), retry
        )

        self.assertIsNone(result)
        retry.assert_not_called()

    def test_collection_timeout_returns_no_data(self):
        primary = mock.Mock(side_effect=collection_missing())
        trigger = mock.Mock(side_effect=OperationTimeoutError("too slow", timeout_seconds=300))
        retry = mock.Mock()

        result = self.coordinator.read_with_collection_fallback(primary, is_collection_missing_error, trigger, retry)

        self.assertIsNone(result)
        retry.assert_not_called()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
