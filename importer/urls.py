from django.urls import path

from importer import views

app_name = "importer"

urlpatterns = [
    path("", views.import_run_list, name="import-run-list"),
    path("<int:run_id>/", views.import_run_status, name="import-run-status"),
]
