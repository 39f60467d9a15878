import logging
import os
import unittest
from unittest import mock

from compute_executor.compute_ops.models import JobTemplateCatalog
from compute_executor.compute_ops.operations import ComputeOperations
from compute_executor.config import Settings, configure_logging


class SettingsTests(unittest.TestCase):
    def test_reads_prefixed_environment(self):
        env = {
            "COM_REGION": "eu-central",
            "COM_ACCESS_TOKEN": "abc",
            "COM_POLL_INTERVAL": "10",
            "COM_GROUP_MEMBER_TIMEOUT": "120",
        }
        with mock.patch.dict(os.environ, env):
            settings = Settings()

        self.assertEqual(settings.region, "eu-central")
        self.assertEqual(settings.access_token, "abc")
        self.assertEqual(settings.poll_interval, 10)
        self.assertEqual(settings.group_member_timeout, 120)

    def test_defaults(self):
        settings = Settings(access_token="abc")

        self.assertEqual(settings.wait_timeout, 300)
        self.assertEqual(settings.collection_settle_delay, 5)


class ConfigureLoggingTests(unittest.TestCase):
    def test_attaches_single_handler(self):
        logger = logging.getLogger("compute_executor")
        original_handlers = list(logger.handlers)
        original_level = logger.level
        try:
            logger.handlers = []
            configure_logging("debug")
            configure_logging("warning")

            self.assertEqual(len(logger.handlers), 1)
            self.assertEqual(logger.level, logging.WARNING)
        finally:
            logger.handlers = original_handlers
            logger.setLevel(original_level)


class FromSettingsTests(unittest.TestCase):
    def test_wires_adapter_and_defaults(self):
        settings = Settings(
            region="ap-northeast",
            access_token="abc",
            poll_interval=7,
            wait_timeout=90,
            collection_settle_delay=1,
            group_member_timeout=600,
        )
        catalog = JobTemplateCatalog.from_api([])

        with mock.patch("compute_executor.compute_ops.operations.load_job_templates", return_value=catalog) as load:
            ops = ComputeOperations.from_settings(settings)

        adapter = load.call_args.args[0]
        self.assertEqual(adapter.base_url, "https://ap-northeast-api.compute.cloud.hpe.com")
        self.assertEqual(adapter.timeout, (5, 30))
        self.assertIs(ops.catalog, catalog)
        self.assertEqual(ops.poll_interval, 7)
        self.assertEqual(ops.wait_timeout, 90)
        self.assertEqual(ops.group_member_timeout, 600)
        self.assertEqual(ops.retry.settle_delay_seconds, 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
