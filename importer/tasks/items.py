from logging import getLogger

from bulkimport.celery import app
from importer import models
from importer.config import importer_setting
from importer.exceptions import StoreUnavailable, TransientApiError
from importer.ratelimit import request_gate_for_run

from .decorators import update_item_status

logger = getLogger(__name__)


# acks_late with reject_on_worker_lost hands an item back to the broker if
# its worker dies, including mid-sleep
@app.task(bind=True, acks_late=True, reject_on_worker_lost=True, max_retries=None)
def import_item_task(self, item_task_pk):
    try:
        item_task = models.ItemTask.objects.select_related("run").get(
            pk=item_task_pk
        )
    except models.ItemTask.DoesNotExist:
        logger.exception(
            "ItemTask %s could not be found while attempting to import it",
            item_task_pk,
        )
        raise

    try:
        return import_item(self, item_task)
    except StoreUnavailable as exc:
        # No attempt is charged: the item is queued again until the store is back
        raise self.retry(
            exc=exc, countdown=importer_setting("STORE_UNAVAILABLE_RETRY_DELAY")
        )


@update_item_status
def import_item(self, item_task, session=None):
    """
    Fetch the remote item's details and store them on the ItemTask
    """
    gate = request_gate_for_run(item_task.run_id, session=session)
    response = gate.get(item_task.url)

    if not response.ok:
        raise TransientApiError(
            f"Failed to fetch item {item_task.external_id}: {response.status_code}"
        )

    try:
        item_data = response.json()
    except ValueError as exc:
        raise TransientApiError(
            f"Item {item_task.external_id} returned a body which is not JSON"
        ) from exc

    item_task.payload = item_data
    if isinstance(item_data, dict) and item_data.get("name"):
        item_task.name = str(item_data["name"])[:255]
    item_task.save(update_fields=["payload", "name", "modified"])
    logger.info("Imported details for %s", item_task)


def run_item_task(item_task_pk):
    return import_item_task.delay(item_task_pk)


def reschedule_item_task(item_task_pk, delay):
    return import_item_task.apply_async((item_task_pk,), countdown=delay)
