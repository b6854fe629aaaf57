from logging import getLogger

from bulkimport.celery import app
from importer import models
from importer.completion import CompletionDetector
from importer.config import importer_setting
from importer.exceptions import TransientApiError
from importer.metrics import MetricsAggregator
from importer.ratelimit import request_gate_for_run

from .items import run_item_task

logger = getLogger(__name__)


def start_import_run(source_url=None, created_by=None):
    """
    Create an ImportRun and queue the discovery of its items
    """
    run = models.ImportRun.objects.create(
        source_url=source_url or importer_setting("API_BASE_URL"),
        created_by=created_by,
    )
    discover_items_task.delay(run.pk)
    logger.info("Started %s", run)
    return run


def items_list_url(source_url):
    return f"{source_url.rstrip('/')}/items"


def item_detail_url(source_url, external_id):
    return f"{items_list_url(source_url)}/{external_id}"


def has_next_page(data):
    if data.get("next_page_url"):
        return True
    return (data.get("current_page") or 0) < (data.get("last_page") or 0)


class DiscoverItemsTask(app.Task):
    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """
        Discovery gave up. The items found so far are already queued, so the
        run still needs its completion check
        """
        run_pk = args[0] if args else kwargs["run_pk"]
        logger.error(
            "Discovery for import run %s failed, only items found so far will "
            "be imported: %s",
            run_pk,
            exc,
        )
        finalize_import_run_task.apply_async(
            (run_pk,), countdown=importer_setting("FINALIZE_INITIAL_DELAY")
        )


@app.task(
    bind=True,
    base=DiscoverItemsTask,
    autoretry_for=(TransientApiError,),
    retry_backoff=60,
    retry_backoff_max=30 * 60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def discover_items_task(self, run_pk):
    run = models.ImportRun.objects.get(pk=run_pk)
    return discover_items(run)


def discover_items(run, session=None):
    """
    Page through the remote item list creating an ItemTask for each item and
    queueing its import, then queue the completion check

    Items are queued page by page, so a failure on a later page leaves the
    earlier items importing. Safe to run again after a failure: items which
    already have an ItemTask are neither recreated nor counted again, and only
    those still pending are queued again.
    """
    gate = request_gate_for_run(run.pk, session=session)
    metrics = MetricsAggregator(run.pk)
    list_url = items_list_url(run.source_url)
    per_page = importer_setting("ITEMS_PER_PAGE")
    page = 1
    queued = 0

    while True:
        response = gate.get(list_url, params={"page": page, "per_page": per_page})
        if not response.ok:
            raise TransientApiError(
                f"Failed to list items page {page} for {run}: {response.status_code}"
            )
        data = response.json()
        items = data.get("data") or []

        created = create_item_tasks(run, items)
        if created:
            metrics.record_items_discovered(created)
        queued += queue_pending_item_tasks(run, items)
        logger.info("Discovered %s new items on page %s for %s", created, page, run)

        if not has_next_page(data):
            break
        page += 1

    finalize_import_run_task.apply_async(
        (run.pk,), countdown=importer_setting("FINALIZE_INITIAL_DELAY")
    )
    return queued


def queue_pending_item_tasks(run, items):
    item_task_pks = list(
        run.item_tasks.filter(
            external_id__in=[str(item["id"]) for item in items],
            status=models.ItemTask.Status.PENDING,
        ).values_list("pk", flat=True)
    )
    for item_task_pk in item_task_pks:
        run_item_task(item_task_pk)
    return len(item_task_pks)


def create_item_tasks(run, items):
    external_ids = [str(item["id"]) for item in items]
    existing = set(
        run.item_tasks.filter(external_id__in=external_ids).values_list(
            "external_id", flat=True
        )
    )
    new_item_tasks = []
    for item in items:
        external_id = str(item["id"])
        if external_id in existing:
            continue
        existing.add(external_id)
        new_item_tasks.append(
            models.ItemTask(
                run=run,
                external_id=external_id,
                name=str(item.get("name") or "")[:255],
                url=item_detail_url(run.source_url, external_id),
            )
        )
    models.ItemTask.objects.bulk_create(new_item_tasks, ignore_conflicts=True)
    return len(new_item_tasks)


@app.task(bind=True)
def finalize_import_run_task(self, run_pk):
    """
    Check whether the run is over and, if not, check again later
    """
    detector = CompletionDetector()
    result = detector.check(run_pk)
    if result.should_poll_again:
        finalize_import_run_task.apply_async(
            (run_pk,), countdown=detector.poll_delay
        )
    return result.outcome.value
