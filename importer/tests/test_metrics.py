from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from importer.metrics import MetricsAggregator, run_report
from importer.ratelimit.coordinator import CooldownCause, CooldownEvent

from .utils import create_import_run


class MetricsAggregatorTests(TestCase):
    def setUp(self):
        self.run = create_import_run()
        self.metrics = MetricsAggregator(self.run.pk)

    def test_counters(self):
        self.metrics.record_items_discovered(10)
        self.metrics.record_items_discovered(5)
        self.metrics.record_item_imported()
        self.metrics.record_item_imported()
        self.metrics.record_hit()

        self.run.refresh_from_db()
        self.assertEqual(self.run.items_count, 15)
        self.assertEqual(self.run.items_imported_count, 2)
        self.assertEqual(self.run.rate_limit_hits_count, 1)

    def test_record_sleep(self):
        self.metrics.record_sleep(10)
        self.metrics.record_sleep(5, count=0)

        self.run.refresh_from_db()
        self.assertEqual(self.run.rate_limit_sleeps_count, 1)
        self.assertEqual(self.run.total_sleep_seconds, 15)

    def test_zero_amounts_do_nothing(self):
        self.assertEqual(self.metrics.record_sleep(0, count=0), 0)
        self.assertEqual(self.metrics.record_items_discovered(0), 0)

    def test_ended_run_is_not_changed(self):
        self.run.ended_at = timezone.now()
        self.run.save()

        with self.assertLogs("importer.metrics", level="INFO"):
            self.assertEqual(self.metrics.record_item_imported(), 0)

        self.run.refresh_from_db()
        self.assertEqual(self.run.items_imported_count, 0)

    def test_record_finalize_attempt(self):
        self.metrics.record_finalize_attempt()
        self.metrics.record_finalize_attempt()

        self.run.refresh_from_db()
        self.assertEqual(self.run.finalize_attempts, 2)
        self.assertIsNotNone(self.run.last_finalize_attempt_at)

    def test_cooldown_observed(self):
        self.metrics.cooldown_observed(
            CooldownEvent(CooldownCause.THROTTLED, 10, 1010, acquired=True)
        )
        self.metrics.cooldown_observed(
            CooldownEvent(CooldownCause.SERVER, 8, 1018, acquired=True)
        )
        self.metrics.cooldown_observed(
            CooldownEvent(
                CooldownCause.SERVER, 12, 1022, acquired=False, extended_seconds=4
            )
        )
        # Waiting on someone else's cooldown records nothing
        self.metrics.cooldown_observed(
            CooldownEvent(CooldownCause.SERVER, 8, 1022, acquired=False)
        )

        self.run.refresh_from_db()
        self.assertEqual(self.run.rate_limit_sleeps_count, 2)
        self.assertEqual(self.run.rate_limit_hits_count, 1)
        self.assertEqual(self.run.total_sleep_seconds, 22)

    def test_extending_a_server_cooldown_records_no_hit(self):
        self.metrics.cooldown_observed(
            CooldownEvent(
                CooldownCause.SERVER, 12, 1022, acquired=False, extended_seconds=4
            )
        )

        self.run.refresh_from_db()
        self.assertEqual(self.run.rate_limit_hits_count, 0)
        self.assertEqual(self.run.rate_limit_sleeps_count, 0)
        self.assertEqual(self.run.total_sleep_seconds, 4)


class RunReportTests(TestCase):
    def test_report(self):
        now = timezone.now()
        run = create_import_run(
            started_at=now - timedelta(seconds=100),
            items_count=4,
            items_imported_count=1,
            rate_limit_hits_count=1,
            rate_limit_sleeps_count=3,
            total_sleep_seconds=40,
        )

        report = run_report(run, now=now)

        self.assertEqual(report["id"], run.pk)
        self.assertEqual(report["status"], "running")
        self.assertEqual(report["elapsed_seconds"], 100.0)
        self.assertEqual(report["active_seconds"], 60.0)
        self.assertEqual(report["efficiency"], 0.75)
        self.assertEqual(report["progress_percentage"], 25.0)
        self.assertIsNone(report["ended_at"])

    def test_ended_run_uses_its_end_time(self):
        now = timezone.now()
        run = create_import_run(
            started_at=now - timedelta(seconds=100),
            ended_at=now - timedelta(seconds=40),
        )

        report = run_report(run, now=now)

        self.assertEqual(report["elapsed_seconds"], 60.0)
        self.assertIsNone(report["efficiency"])
        self.assertEqual(report["progress_percentage"], 0.0)
