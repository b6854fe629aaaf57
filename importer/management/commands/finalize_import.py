from django.core.management.base import BaseCommand, CommandError

from importer.completion import CompletionDetector, CompletionOutcome


class Command(BaseCommand):
    help = "Check once whether an import run is complete and end it if so"

    def add_arguments(self, parser):
        parser.add_argument("run_id", type=int)

    def handle(self, *, run_id, **options):
        result = CompletionDetector().check(run_id)

        if result.outcome is CompletionOutcome.MISSING:
            raise CommandError(f"Import run {run_id} does not exist")

        self.stdout.write(
            f"Import run {run_id}: {result.outcome.value} "
            f"({result.imported_count} of {result.items_count} imported, "
            f"{result.permanently_failed_count} permanently failed)"
        )
