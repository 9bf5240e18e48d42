from __future__ import annotations

import json

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from bulk_distances.services.export import read_exported


def _csv_file(rows: list[tuple[str, str]], name: str = "rows.csv") -> SimpleUploadedFile:
    lines = ["From,To", *(f'"{start}","{finish}"' for start, finish in rows)]
    return SimpleUploadedFile(name, ("\n".join(lines) + "\n").encode(), content_type="text/csv")


@pytest.fixture()
def patched_resolver(mocker, make_resolver):
    resolver = make_resolver()
    mocker.patch("bulk_distances.views.get_resolver", return_value=resolver)
    return resolver


def _post_json(api_client, url: str, payload: dict | None = None):
    return api_client.post(url, data=json.dumps(payload or {}), content_type="application/json")


@pytest.mark.django_db
def test_home_view_renders(api_client) -> None:
    response = api_client.get("/")

    assert response.status_code == 200
    body = response.content.decode()
    assert 'id="upload-form"' in body
    assert 'accept=".xlsx,.csv"' in body
    assert "/api/v1/upload" in body
    assert "/api/v1/template.xlsx" in body
    assert 'id="vehicle-type"' in body
    assert '<option value="petrol_car" selected>' in body
    assert 'id="paypal-button"' in body


def test_health_endpoint_reports_configuration(api_client) -> None:
    response = api_client.get("/api/v1/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["payments"]["currency"] == "EUR"


@pytest.mark.django_db
def test_upload_returns_validation_summary(api_client) -> None:
    response = api_client.post(
        "/api/v1/upload",
        {
            "file": _csv_file(
                [("Riga, Latvia", "Vilnius, Lithuania"), ("Riga, Latvia", "Vilnius, Lithuania")]
            )
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["state"] == "within_quota"
    assert payload["total_rows"] == 2
    assert payload["duplicate_count"] == 1
    assert payload["duplicates"] == ["Riga, Latvia|Vilnius, Lithuania"]
    assert payload["billable_rows"] == 0
    assert payload["shortfall"] == 0
    assert payload["price_due"] == "0.00"


@pytest.mark.django_db
def test_upload_without_file_returns_400(api_client) -> None:
    response = api_client.post("/api/v1/upload", {})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "missing_file"


@pytest.mark.django_db
def test_upload_unsupported_format_returns_400(api_client) -> None:
    upload = SimpleUploadedFile("rows.txt", b"From,To\nA,B\n", content_type="text/plain")

    response = api_client.post("/api/v1/upload", {"file": upload})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "unsupported_format"


@pytest.mark.django_db
def test_upload_with_missing_columns_returns_parse_error(api_client) -> None:
    upload = SimpleUploadedFile("rows.csv", b"Origin,Destination\nA,B\n", content_type="text/csv")

    response = api_client.post("/api/v1/upload", {"file": upload})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "parse_error"


@pytest.mark.django_db
def test_upload_too_large_returns_413(api_client, settings) -> None:
    settings.MAX_UPLOAD_BYTES = 16

    response = api_client.post(
        "/api/v1/upload", {"file": _csv_file([("Riga, Latvia", "Vilnius, Lithuania")])}
    )

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "file_too_large"


@pytest.mark.django_db
def test_calculate_and_download_results(api_client, patched_resolver) -> None:
    api_client.post(
        "/api/v1/upload",
        {"file": _csv_file([("Riga, Latvia", "Vilnius, Lithuania"), ("Atlantis", "Riga, Latvia")])},
    )

    response = _post_json(api_client, "/api/v1/calculate", {"vehicle_type": "diesel_car"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["state"] == "done"
    assert payload["total_rows"] == 2
    assert payload["failed_rows"] == 1
    assert payload["rows"][0]["status"] == "ok"
    assert payload["rows"][0]["distance"].endswith(" km")
    assert payload["rows"][0]["co2_kg"] is not None
    assert payload["rows"][1]["status"] == "geocode_failed"
    assert payload["rows"][1]["distance"] == "Geocode failed"

    download = api_client.get("/api/v1/results.xlsx")

    assert download.status_code == 200
    assert download["Content-Disposition"] == 'attachment; filename="calculated_distances.xlsx"'
    exported = read_exported(download.content)
    assert [row["From"] for row in exported] == ["Riga, Latvia", "Atlantis"]
    assert exported[1]["Distance"] == "Geocode failed"
    assert exported[0]["Vehicle"] == "diesel_car"


@pytest.mark.django_db
def test_calculate_rejects_unknown_vehicle(api_client, patched_resolver) -> None:
    api_client.post("/api/v1/upload", {"file": _csv_file([("Riga, Latvia", "Vilnius, Lithuania")])})

    response = _post_json(api_client, "/api/v1/calculate", {"vehicle_type": "rocket"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "unknown_vehicle"


@pytest.mark.django_db
def test_calculate_validation_error_returns_400(api_client) -> None:
    response = _post_json(api_client, "/api/v1/calculate", {"vehicle": "van"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


@pytest.mark.django_db
def test_calculate_before_upload_returns_409(api_client) -> None:
    response = _post_json(api_client, "/api/v1/calculate")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "invalid_state"


@pytest.mark.django_db
def test_download_before_calculation_returns_409(api_client) -> None:
    response = api_client.get("/api/v1/results.xlsx")

    assert response.status_code == 409


def test_template_download(api_client) -> None:
    response = api_client.get("/api/v1/template.xlsx")

    assert response.status_code == 200
    assert 'filename="distance_template.xlsx"' in response["Content-Disposition"]


@pytest.mark.django_db
def test_over_quota_embedded_payment_flow(api_client, patched_resolver) -> None:
    rows = [(f"City {index}", "Riga, Latvia") for index in range(12)]
    upload = api_client.post("/api/v1/upload", {"file": _csv_file(rows)}).json()
    assert upload["state"] == "over_quota"
    assert upload["shortfall"] == 2
    assert upload["shortfall_price"] == "0.20"

    blocked = _post_json(api_client, "/api/v1/calculate")
    assert blocked.status_code == 402
    assert blocked.json()["error"]["shortfall"] == 2

    payment = _post_json(api_client, "/api/v1/payments/start").json()
    assert payment["rows"] == 2
    assert payment["amount"] == "0.20"

    capture = _post_json(api_client, "/api/v1/payments/capture", {"rows": 2, "order_id": "ORDER-1"})
    assert capture.status_code == 200
    assert capture.json() == {"state": "payment_confirmed", "paid_rows": 2, "allowed_rows": 12}

    calculated = _post_json(api_client, "/api/v1/calculate")
    assert calculated.status_code == 200
    assert calculated.json()["total_rows"] == 12


@pytest.mark.django_db
def test_redirect_payment_return_is_consumed_once(api_client) -> None:
    rows = [(f"City {index}", "Riga, Latvia") for index in range(13)]
    api_client.post("/api/v1/upload", {"file": _csv_file(rows)})
    payment = _post_json(api_client, "/api/v1/payments/start").json()
    assert "paid%3D3" in payment["redirect_url"]

    response = api_client.get("/?paid=3")

    assert response.status_code == 302
    assert response["Location"] == "/"
    ledger = api_client.get("/api/v1/ledger").json()
    assert ledger == {"state": "payment_confirmed", "paid_rows": 3, "allowed_rows": 13}

    api_client.get("/?paid=3")
    assert api_client.get("/api/v1/ledger").json()["paid_rows"] == 3


@pytest.mark.django_db
def test_payment_return_after_new_upload_is_logged_for_reconciliation(api_client, mocker) -> None:
    logger = mocker.patch("bulk_distances.views.logger")
    rows = [(f"City {index}", "Riga, Latvia") for index in range(13)]
    api_client.post("/api/v1/upload", {"file": _csv_file(rows)})
    _post_json(api_client, "/api/v1/payments/start")
    api_client.post("/api/v1/upload", {"file": _csv_file([("Riga, Latvia", "Vilnius, Lithuania")])})

    response = api_client.get("/?paid=3")

    assert response.status_code == 302
    assert api_client.get("/api/v1/ledger").json()["paid_rows"] == 0
    logger.warning.assert_called_once_with(
        "Payment return for %d rows not credited: batch is %s", 3, "within_quota"
    )


@pytest.mark.django_db
def test_mismatched_capture_fails_payment(api_client) -> None:
    rows = [(f"City {index}", "Riga, Latvia") for index in range(11)]
    api_client.post("/api/v1/upload", {"file": _csv_file(rows)})
    _post_json(api_client, "/api/v1/payments/start")

    response = _post_json(api_client, "/api/v1/payments/capture", {"rows": 50})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "payment_failed"
    ledger = api_client.get("/api/v1/ledger").json()
    assert ledger["state"] == "payment_failed"
    assert ledger["paid_rows"] == 0


@pytest.mark.django_db
def test_cancelled_payment_can_be_retried(api_client) -> None:
    rows = [(f"City {index}", "Riga, Latvia") for index in range(11)]
    api_client.post("/api/v1/upload", {"file": _csv_file(rows)})
    _post_json(api_client, "/api/v1/payments/start")

    failed = _post_json(api_client, "/api/v1/payments/failed", {"reason": "Payment was cancelled"})
    assert failed.json()["state"] == "payment_failed"

    retry = _post_json(api_client, "/api/v1/payments/start")
    assert retry.status_code == 200
    assert retry.json()["rows"] == 1


@pytest.mark.django_db
def test_payment_not_required_within_quota(api_client) -> None:
    api_client.post("/api/v1/upload", {"file": _csv_file([("Riga, Latvia", "Vilnius, Lithuania")])})

    response = _post_json(api_client, "/api/v1/payments/start")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "invalid_state"
