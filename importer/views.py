from django.contrib.admin.views.decorators import staff_member_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET

from importer.metrics import run_report
from importer.models import ImportRun


@never_cache
@require_GET
@staff_member_required
def import_run_status(request, run_id):
    """
    Return the progress and rate limit metrics of one import run as JSON
    """
    run = get_object_or_404(ImportRun, pk=run_id)
    return JsonResponse(run_report(run))


@never_cache
@require_GET
@staff_member_required
def import_run_list(request):
    """
    Return the metrics of the most recent import runs as JSON
    """
    runs = ImportRun.objects.all()[:25]
    return JsonResponse({"runs": [run_report(run) for run in runs]})
