from django.core.management.base import BaseCommand

from importer.models import ImportRun
from importer.ratelimit import get_rate_limit_store
from importer.tasks.runs import start_import_run


class Command(BaseCommand):
    help = "Start an import run which loads every item from the remote API"

    def add_arguments(self, parser):
        parser.add_argument(
            "--source-url",
            help="Base URL of the remote API (defaults to IMPORTER['API_BASE_URL'])",
        )
        parser.add_argument(
            "--fresh",
            action="store_true",
            help="Delete all existing import runs and rate limit state first",
        )

    def handle(self, *, source_url=None, fresh=False, **options):
        if fresh:
            self.stdout.write(self.style.WARNING("Clearing import tracking data..."))
            ImportRun.objects.all().delete()
            get_rate_limit_store().clear()

        run = start_import_run(source_url=source_url)
        self.stdout.write(
            self.style.SUCCESS(f"Started import run {run.pk} from {run.source_url}")
        )
