from datetime import timedelta

from django.contrib.auth.models import User
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from .utils import create_import_run


class ImportRunViewTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="staff", password="top-secret", is_staff=True
        )

    def login(self):
        self.client.force_login(self.user)

    def test_status_requires_staff(self):
        run = create_import_run()
        url = reverse("importer:import-run-status", args=(run.pk,))

        response = self.client.get(url)

        self.assertEqual(response.status_code, 302)
        self.assertIn(reverse("admin:login"), response["Location"])

    def test_status(self):
        run = create_import_run(
            items_count=10, items_imported_count=4, total_sleep_seconds=20
        )
        self.login()

        response = self.client.get(
            reverse("importer:import-run-status", args=(run.pk,))
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("no-cache", response["Cache-Control"])
        data = response.json()
        self.assertEqual(data["id"], run.pk)
        self.assertEqual(data["status"], "running")
        self.assertEqual(data["items_count"], 10)
        self.assertEqual(data["items_imported_count"], 4)
        self.assertEqual(data["total_sleep_seconds"], 20)
        self.assertEqual(data["progress_percentage"], 40.0)

    def test_status_missing_run(self):
        self.login()
        response = self.client.get(
            reverse("importer:import-run-status", args=(999999,))
        )
        self.assertEqual(response.status_code, 404)

    def test_status_rejects_post(self):
        run = create_import_run()
        self.login()
        response = self.client.post(
            reverse("importer:import-run-status", args=(run.pk,))
        )
        self.assertEqual(response.status_code, 405)

    def test_list(self):
        now = timezone.now()
        first = create_import_run(started_at=now - timedelta(minutes=5))
        second = create_import_run(started_at=now)
        self.login()

        response = self.client.get(reverse("importer:import-run-list"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [run["id"] for run in response.json()["runs"]], [second.pk, first.pk]
        )
