from datetime import timedelta

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from importer.models import ItemTask
from importer.retry import RetryScheduler

from .utils import create_import_run, create_item_task


class RetrySchedulerConfigTests(SimpleTestCase):
    def test_defaults(self):
        scheduler = RetryScheduler()
        self.assertEqual(scheduler.backoff, (30, 60, 120, 240))
        self.assertEqual(scheduler.max_attempts, 5)
        self.assertEqual(scheduler.grace_window, 300)

    @override_settings(
        IMPORTER={
            "RETRY_BACKOFF": [5, 10],
            "MAX_ATTEMPTS": 3,
            "PERMANENT_FAILURE_GRACE": 60,
        }
    )
    def test_settings(self):
        scheduler = RetryScheduler()
        self.assertEqual(scheduler.backoff, (5, 10))
        self.assertEqual(scheduler.max_attempts, 3)
        self.assertEqual(scheduler.grace_window, 60)

    def test_grace_window_must_outlast_backoff(self):
        with self.assertRaisesRegex(ImproperlyConfigured, "PERMANENT_FAILURE_GRACE"):
            RetryScheduler(backoff=[30, 300], grace_window=300)

    def test_invalid_values(self):
        with self.assertRaises(ImproperlyConfigured):
            RetryScheduler(backoff=[])
        with self.assertRaises(ImproperlyConfigured):
            RetryScheduler(backoff=[-1])
        with self.assertRaises(ImproperlyConfigured):
            RetryScheduler(max_attempts=0)

    def test_backoff_for(self):
        scheduler = RetryScheduler(backoff=[30, 60, 120, 240])
        self.assertEqual(
            [scheduler.backoff_for(attempts) for attempts in range(0, 7)],
            [30, 30, 60, 120, 240, 240, 240],
        )


class RetrySchedulerTests(TestCase):
    def setUp(self):
        self.scheduler = RetryScheduler()
        self.item_task = create_item_task()

    def test_mark_processing(self):
        task_id = "7c4d3a1e-9b0f-4c52-8a0d-2f6b1e9d4c11"
        self.scheduler.mark_processing(self.item_task, task_id=task_id)

        self.item_task.refresh_from_db()
        self.assertEqual(self.item_task.status, ItemTask.Status.PROCESSING)
        self.assertIsNotNone(self.item_task.last_started)
        self.assertEqual(str(self.item_task.task_id), task_id)

    def test_mark_completed_only_once(self):
        self.item_task.failure_kind = ItemTask.FailureKind.TRANSIENT
        self.item_task.save()

        self.assertTrue(self.scheduler.mark_completed(self.item_task))
        self.assertFalse(self.scheduler.mark_completed(self.item_task))

        self.item_task.refresh_from_db()
        self.assertEqual(self.item_task.status, ItemTask.Status.COMPLETED)
        self.assertIsNotNone(self.item_task.completed)
        self.assertEqual(self.item_task.failure_kind, "")

    def test_failures_follow_the_backoff_then_stop(self):
        delays = []
        for attempt in range(1, 6):
            delays.append(
                self.scheduler.record_failure(
                    self.item_task, Exception(f"failure {attempt}")
                )
            )

        self.assertEqual(delays, [30, 60, 120, 240, None])

        self.item_task.refresh_from_db()
        self.assertEqual(self.item_task.status, ItemTask.Status.FAILED)
        self.assertEqual(self.item_task.attempts, 5)
        self.assertEqual(self.item_task.failure_kind, ItemTask.FailureKind.RETRIES)
        self.assertEqual(self.item_task.failure_reason, "failure 5")
        self.assertEqual(
            [entry["attempt"] for entry in self.item_task.failure_history],
            [1, 2, 3, 4, 5],
        )

    def test_transient_failure(self):
        with self.assertLogs("importer.retry", level="INFO") as log:
            delay = self.scheduler.record_failure(self.item_task, Exception("502"))

        self.assertEqual(delay, 30)
        self.assertIn("will be retried in 30s", log.output[0])
        self.item_task.refresh_from_db()
        self.assertEqual(self.item_task.failure_kind, ItemTask.FailureKind.TRANSIENT)
        self.assertIsNotNone(self.item_task.last_failed_at)

    def test_failure_reason_is_truncated(self):
        self.scheduler.record_failure(self.item_task, Exception("x" * 5000))
        self.item_task.refresh_from_db()
        self.assertEqual(len(self.item_task.failure_reason), 2000)

    def test_permanently_failed(self):
        now = timezone.now()
        run = create_import_run()
        old = create_item_task(
            run=run,
            external_id="old",
            status=ItemTask.Status.FAILED,
            last_failed_at=now - timedelta(seconds=301),
        )
        create_item_task(
            run=run,
            external_id="recent",
            status=ItemTask.Status.FAILED,
            last_failed_at=now - timedelta(seconds=60),
        )
        create_item_task(
            run=run,
            external_id="completed",
            status=ItemTask.Status.COMPLETED,
            last_failed_at=now - timedelta(seconds=600),
        )
        create_item_task(run=run, external_id="pending")

        permanently_failed = self.scheduler.permanently_failed(
            ItemTask.objects.filter(run=run), now=now
        )

        self.assertEqual(list(permanently_failed), [old])
        self.assertTrue(self.scheduler.is_permanently_failed(old, now=now))
        self.assertFalse(
            self.scheduler.is_permanently_failed(
                ItemTask.objects.get(external_id="recent"), now=now
            )
        )

    def test_exhausted_item_is_permanent_after_the_grace_window(self):
        now = timezone.now()
        for _ in range(5):
            self.scheduler.record_failure(self.item_task, Exception("502"), now=now)

        self.assertFalse(self.scheduler.is_permanently_failed(self.item_task, now))
        self.assertTrue(
            self.scheduler.is_permanently_failed(
                self.item_task, now + timedelta(seconds=300)
            )
        )
