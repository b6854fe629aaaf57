import enum
from dataclasses import dataclass
from logging import getLogger

from django.utils import timezone

from bulkimport.logging import StructuredLogger
from importer.config import importer_setting
from importer.metrics import MetricsAggregator
from importer.models import ImportRun, ItemTask
from importer.retry import RetryScheduler

logger = getLogger(__name__)
structured_logger = StructuredLogger.get_logger(__name__)


class CompletionOutcome(enum.Enum):
    MISSING = "missing"
    ALREADY_ENDED = "already_ended"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    WAITING = "waiting"


@dataclass(frozen=True)
class CompletionResult:
    outcome: CompletionOutcome
    items_count: int = 0
    imported_count: int = 0
    permanently_failed_count: int = 0

    @property
    def should_poll_again(self):
        return self.outcome is CompletionOutcome.WAITING


class CompletionDetector:
    """
    Decides whether an import run is over

    Safe to call any number of times: once a run has ended every further
    check is a no-op. Items are never retried from here.
    """

    def __init__(self, scheduler=None, poll_delay=None):
        self.scheduler = scheduler or RetryScheduler()
        if poll_delay is None:
            poll_delay = importer_setting("FINALIZE_POLL_DELAY")
        self.poll_delay = poll_delay

    def check(self, run_pk, now=None):
        if now is None:
            now = timezone.now()

        MetricsAggregator(run_pk).record_finalize_attempt()

        try:
            run = ImportRun.objects.get(pk=run_pk)
        except ImportRun.DoesNotExist:
            logger.warning("Import run %s no longer exists", run_pk)
            return CompletionResult(CompletionOutcome.MISSING)

        if run.is_ended:
            return CompletionResult(
                CompletionOutcome.ALREADY_ENDED,
                items_count=run.items_count,
                imported_count=run.items_imported_count,
                permanently_failed_count=run.items_failed_count,
            )

        item_tasks = ItemTask.objects.filter(run=run)
        imported = item_tasks.filter(status=ItemTask.Status.COMPLETED).count()
        # The counter can only lag the rows, never lead them
        imported = max(imported, run.items_imported_count)
        permanently_failed = self.scheduler.permanently_failed(
            item_tasks, now=now
        ).count()

        if imported >= run.items_count:
            outcome = CompletionOutcome.COMPLETED
            status = ImportRun.Status.COMPLETED
            permanently_failed = 0
        elif imported + permanently_failed >= run.items_count:
            outcome = CompletionOutcome.COMPLETED_WITH_FAILURES
            status = ImportRun.Status.COMPLETED_WITH_FAILURES
        else:
            logger.debug(
                "Import run %s is not finished: %s imported, %s permanently "
                "failed, %s total",
                run_pk,
                imported,
                permanently_failed,
                run.items_count,
            )
            return CompletionResult(
                CompletionOutcome.WAITING,
                items_count=run.items_count,
                imported_count=imported,
                permanently_failed_count=permanently_failed,
            )

        ended = ImportRun.objects.filter(pk=run_pk, ended_at__isnull=True).update(
            ended_at=now,
            status=status,
            items_failed_count=permanently_failed,
            modified=now,
        )
        if not ended:
            # Another invocation ended the run first
            return CompletionResult(
                CompletionOutcome.ALREADY_ENDED,
                items_count=run.items_count,
                imported_count=imported,
                permanently_failed_count=permanently_failed,
            )

        run.refresh_from_db()
        if permanently_failed:
            structured_logger.warning(
                "Import run completed with permanently failed items.",
                event_code="import_run_completed_with_failures",
                reason=f"{permanently_failed} items exhausted their retries",
                reason_code="items_permanently_failed",
                run=run,
                items_count=run.items_count,
                items_imported_count=run.items_imported_count,
                permanently_failed_count=permanently_failed,
            )
        else:
            structured_logger.info(
                "Import run completed.",
                event_code="import_run_completed",
                run=run,
                items_count=run.items_count,
                items_imported_count=run.items_imported_count,
            )

        return CompletionResult(
            outcome,
            items_count=run.items_count,
            imported_count=imported,
            permanently_failed_count=permanently_failed,
        )
