from django.urls import path

from bulk_distances import views

urlpatterns = [
    path("", views.home_view, name="home"),
    path("api/v1/health", views.health_view, name="health"),
    path("api/v1/upload", views.upload_view, name="upload"),
    path("api/v1/calculate", views.calculate_view, name="calculate"),
    path("api/v1/results.xlsx", views.results_download_view, name="results-download"),
    path("api/v1/template.xlsx", views.template_download_view, name="template-download"),
    path("api/v1/ledger", views.ledger_view, name="ledger"),
    path("api/v1/payments/start", views.payment_start_view, name="payment-start"),
    path("api/v1/payments/capture", views.payment_capture_view, name="payment-capture"),
    path("api/v1/payments/failed", views.payment_failed_view, name="payment-failed"),
]
