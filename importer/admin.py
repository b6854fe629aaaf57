from django.contrib import admin, messages
from django.contrib.humanize.templatetags.humanize import naturaltime
from django.db.models import QuerySet
from django.http import HttpRequest

from importer.tasks.items import run_item_task

from .models import ImportRun, ItemTask


@admin.action(description="Retry import")
def retry_item_task(
    modeladmin: admin.ModelAdmin,
    request: HttpRequest,
    queryset: QuerySet[ItemTask],
) -> None:
    """
    Queue the item import task again for the selected rows which have not
    been imported, giving permanently failed rows a fresh attempt budget.
    """
    queryset = queryset.exclude(status=ItemTask.Status.COMPLETED).filter(
        run__ended_at__isnull=True
    )
    queryset.filter(failure_kind=ItemTask.FailureKind.RETRIES).update(
        attempts=0, failure_kind=""
    )
    pks = list(queryset.values_list("pk", flat=True))
    for pk in pks:
        run_item_task(pk)
    messages.add_message(request, messages.INFO, "Queued %d tasks" % len(pks))


class NullableTimestampFilter(admin.SimpleListFilter):
    """
    Filter on whether a datetime field has a value or is null
    """

    title = ""
    parameter_name = ""
    lookup_labels = ("NULL", "NOT NULL")

    def lookups(self, request, model_admin):
        return zip(("null", "not-null"), self.lookup_labels, strict=False)

    def queryset(self, request, queryset):
        kwargs = {"%s__isnull" % self.parameter_name: True}
        if self.value() == "null":
            return queryset.filter(**kwargs)
        elif self.value() == "not-null":
            return queryset.exclude(**kwargs)
        return queryset


class EndedFilter(NullableTimestampFilter):
    title = "Ended"
    parameter_name = "ended_at"
    lookup_labels = ("Running", "Ended")


class LastFailedFilter(NullableTimestampFilter):
    title = "Failed"
    parameter_name = "last_failed_at"
    lookup_labels = ("Has not failed", "Has failed")


def natural_timestamp(field_name):
    def inner(obj):
        value = getattr(obj, field_name, None)
        if value:
            return naturaltime(value)
        return value

    inner.short_description = field_name.replace("_", " ").title()
    inner.admin_order_field = field_name
    return inner


@admin.register(ImportRun)
class ImportRunAdmin(admin.ModelAdmin):
    readonly_fields = (
        "created",
        "modified",
        "created_by",
        "status",
        "started_at",
        "ended_at",
        "items_count",
        "items_imported_count",
        "items_failed_count",
        "rate_limit_hits_count",
        "rate_limit_sleeps_count",
        "total_sleep_seconds",
        "active_seconds",
        "efficiency",
        "finalize_attempts",
        "last_finalize_attempt_at",
    )
    list_display = (
        "id",
        "display_started_at",
        "display_ended_at",
        "status",
        "items_count",
        "items_imported_count",
        "items_failed_count",
        "progress_percentage",
        "rate_limit_hits_count",
        "rate_limit_sleeps_count",
        "total_sleep_seconds",
    )
    list_filter = ("status", EndedFilter)
    search_fields = ("source_url",)

    display_started_at = staticmethod(natural_timestamp("started_at"))
    display_ended_at = staticmethod(natural_timestamp("ended_at"))

    @admin.display(description="Active seconds")
    def active_seconds(self, obj):
        return round(obj.active_seconds(), 1)

    @admin.display(description="Efficiency")
    def efficiency(self, obj):
        if obj.efficiency is None:
            return "-"
        return f"{obj.efficiency:.0%}"


@admin.register(ItemTask)
class ItemTaskAdmin(admin.ModelAdmin):
    readonly_fields = (
        "created",
        "modified",
        "run",
        "external_id",
        "url",
        "status",
        "attempts",
        "last_started",
        "completed",
        "last_failed_at",
        "failure_reason",
        "failure_kind",
        "failure_history",
        "task_id",
        "payload",
    )
    list_display = (
        "external_id",
        "name",
        "run",
        "status",
        "attempts",
        "display_last_started",
        "display_last_failed_at",
        "failure_kind",
    )
    list_filter = ("status", "failure_kind", LastFailedFilter)
    search_fields = ("external_id", "name", "url", "failure_reason")
    list_select_related = ("run",)
    actions = (retry_item_task,)

    display_last_started = staticmethod(natural_timestamp("last_started"))
    display_last_failed_at = staticmethod(natural_timestamp("last_failed_at"))
