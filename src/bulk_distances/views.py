from __future__ import annotations

import json
import logging
from typing import Any

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import redirect, render
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST
from pydantic import BaseModel, ValidationError

from bulk_distances.exceptions import (
    BatchCancelledError,
    FileTooLargeError,
    InvalidStateError,
    ParseError,
    PaymentFailedError,
    PaymentNotRequiredError,
    QuotaExceededError,
    UnknownVehicleError,
    UnsupportedFormatError,
)
from bulk_distances.schemas import (
    CalculateRequest,
    CalculateResponse,
    LedgerResponse,
    PaymentCaptureRequest,
    PaymentFailureRequest,
    PaymentResponse,
    ResultRowResponse,
    ValidationSummaryResponse,
)
from bulk_distances.services.emissions import EmissionsCalculator
from bulk_distances.services.export import build_template
from bulk_distances.services.payment import PAID_QUERY_PARAM, PaymentGateway
from bulk_distances.services.pipeline import BatchRegistry, BulkDistanceService, UploadState
from bulk_distances.services.resolver import DistanceResolver
from bulk_distances.services.types import ResultRow
from bulk_distances.services.validation import price_for_rows

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE ="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
NOTICE_SESSION_KEY = "notice"

_resolver: DistanceResolver | None = None
_registry = BatchRegistry()


def get_resolver() -> DistanceResolver:
    global _resolver
    if _resolver is None:
        _resolver = DistanceResolver()
    return _resolver


def build_service(request: HttpRequest) -> BulkDistanceService:
    if request.session.session_key is None:
        request.session.save()
    return BulkDistanceService(
        request.session,
        owner=request.session.session_key,
        resolver=get_resolver(),
        registry=_registry,
    )


@require_GET
def home_view(request: HttpRequest) -> HttpResponse:
    if PAID_QUERY_PARAM in request.GET or "payment" in request.GET:
        _consume_payment_return(request)
        return redirect(request.path)

    service = build_service(request)
    report = service.upload_session.report
    return render(
        request,
        "bulk_distances/home.html",
        {
            "defaults": {
                "free_rows": settings.FREE_ROW_ALLOWANCE,
                "per_row_price": settings.PER_ROW_PRICE,
                "currency": settings.PAYMENT_CURRENCY,
                "max_upload_mb": settings.MAX_UPLOAD_BYTES // (1024 * 1024),
                "default_vehicle": settings.DEFAULT_VEHICLE,
                "paypal_client_id": settings.PAYPAL_CLIENT_ID,
            },
            "vehicle_types": EmissionsCalculator().vehicle_types,
            "state": service.state.value,
            "summary": _summary(service, report).model_dump(mode="json") if report else None,
            "notice": request.session.pop(NOTICE_SESSION_KEY, ""),
        },
    )


@require_GET
def health_view(_: HttpRequest) -> HttpResponse:
    return JsonResponse(
        {
            "status": "ok",
            "geocoding": {
                "configured": bool(settings.GEOAPIFY_API_KEY),
                "concurrency": settings.RESOLVER_CONCURRENCY,
            },
            "payments": {
                "configured": bool(settings.PAYPAL_RECIPIENT or settings.PAYPAL_CLIENT_ID),
                "currency": settings.PAYMENT_CURRENCY,
            },
        }
    )


@csrf_exempt
@require_POST
def upload_view(request: HttpRequest) -> HttpResponse:
    upload = request.FILES.get("file")
    if upload is None:
        return _error_response("missing_file", "Attach a .xlsx or .csv file as 'file'", status=400)

    service = build_service(request)
    try:
        if upload.size and upload.size > settings.MAX_UPLOAD_BYTES:
            raise FileTooLargeError(
                f"File exceeds the {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit"
            )
        outcome = service.upload(upload.name or "", upload.read())
    except FileTooLargeError as exc:
        return _error_response("file_too_large", str(exc), status=413)
    except UnsupportedFormatError as exc:
        return _error_response("unsupported_format", str(exc), status=400)
    except ParseError as exc:
        return _error_response("parse_error", str(exc), status=400)

    return JsonResponse(_summary(service, outcome.report).model_dump(mode="json"), status=200)


@csrf_exempt
@require_POST
def calculate_view(request: HttpRequest) -> HttpResponse:
    calculate_request = _parse_request(request, CalculateRequest)
    if isinstance(calculate_request, JsonResponse):
        return calculate_request

    service = build_service(request)
    try:
        results = service.calculate(calculate_request.vehicle_type)
    except QuotaExceededError as exc:
        return _error_response(
            "quota_exceeded", str(exc), status=402, extra={"shortfall": exc.shortfall}
        )
    except UnknownVehicleError as exc:
        return _error_response("unknown_vehicle", str(exc), status=400)
    except InvalidStateError as exc:
        return _error_response("invalid_state", str(exc), status=409)
    except BatchCancelledError as exc:
        # A newer upload owns the session now; keep its data.
        request.session.modified = False
        return _error_response("batch_cancelled", str(exc), status=409)

    response = CalculateResponse(
        state=service.state.value,
        total_rows=len(results),
        failed_rows=sum(1 for result in results if result.distance_km is None),
        rows=[_result_response(result) for result in results],
        download_url="/api/v1/results.xlsx",
    )
    return JsonResponse(response.model_dump(mode="json"), status=200)


@require_GET
def results_download_view(request: HttpRequest) -> HttpResponse:
    service = build_service(request)
    try:
        content = service.export()
    except InvalidStateError as exc:
        return _error_response("invalid_state", str(exc), status=409)
    return _xlsx_response(content, settings.EXPORT_FILENAME)


@require_GET
def template_download_view(_: HttpRequest) -> HttpResponse:
    return _xlsx_response(build_template(), settings.TEMPLATE_FILENAME)


@require_GET
def ledger_view(request: HttpRequest) -> HttpResponse:
    return JsonResponse(_ledger(build_service(request)).model_dump(mode="json"), status=200)


@csrf_exempt
@require_POST
def payment_start_view(request: HttpRequest) -> HttpResponse:
    service = build_service(request)
    try:
        payment = service.begin_payment()
    except PaymentNotRequiredError as exc:
        return _error_response("payment_not_required", str(exc), status=400)
    except InvalidStateError as exc:
        return _error_response("invalid_state", str(exc), status=409)

    response = PaymentResponse(
        amount=payment.amount,
        currency=payment.currency,
        rows=payment.rows,
        description=payment.description,
        redirect_url=payment.redirect_url,
    )
    return JsonResponse(response.model_dump(mode="json"), status=200)


@csrf_exempt
@require_POST
def payment_capture_view(request: HttpRequest) -> HttpResponse:
    capture = _parse_request(request, PaymentCaptureRequest)
    if isinstance(capture, JsonResponse):
        return capture

    service = build_service(request)
    try:
        service.confirm_payment(capture.rows)
    except InvalidStateError as exc:
        return _error_response("invalid_state", str(exc), status=409)
    except PaymentFailedError as exc:
        service.fail_payment(str(exc))
        return _error_response("payment_failed", str(exc), status=400)

    return JsonResponse(_ledger(service).model_dump(mode="json"), status=200)


@csrf_exempt
@require_POST
def payment_failed_view(request: HttpRequest) -> HttpResponse:
    failure = _parse_request(request, PaymentFailureRequest)
    if isinstance(failure, JsonResponse):
        return failure

    service = build_service(request)
    try:
        service.fail_payment(failure.reason)
    except InvalidStateError as exc:
        return _error_response("invalid_state", str(exc), status=409)

    return JsonResponse(_ledger(service).model_dump(mode="json"), status=200)


def _consume_payment_return(request: HttpRequest) -> None:
    service = build_service(request)
    if PAID_QUERY_PARAM not in request.GET:
        if service.state is UploadState.AWAITING_PAYMENT:
            service.fail_payment()
        request.session[NOTICE_SESSION_KEY] = "Payment was cancelled. You can try again."
        return

    rows = PaymentGateway.parse_paid_rows(request.GET.get(PAID_QUERY_PARAM))
    if rows is None:
        request.session[NOTICE_SESSION_KEY] = "Invalid payment confirmation."
        return

    try:
        service.confirm_payment(rows)
    except InvalidStateError as exc:
        logger.warning(
            "Payment return for %d rows not credited: batch is %s",
            rows,
            service.state.value,
        )
        request.session[NOTICE_SESSION_KEY] = str(exc)
    except PaymentFailedError as exc:
        logger.warning("Payment return for %d rows not credited: %s", rows, exc)
        service.fail_payment(str(exc))
        request.session[NOTICE_SESSION_KEY] = str(exc)
    else:
        request.session[NOTICE_SESSION_KEY] = f"Payment received: {rows} extra rows unlocked."


def _summary(service: BulkDistanceService, report: Any) -> ValidationSummaryResponse:
    shortfall = service.ledger.shortfall(report.total_rows)
    return ValidationSummaryResponse(
        state=service.state.value,
        total_rows=report.total_rows,
        duplicate_count=len(report.duplicate_keys),
        duplicates=sorted(report.duplicate_keys),
        free_rows=min(service.ledger.free_row_allowance, report.total_rows),
        paid_rows=service.ledger.paid_rows,
        allowed_rows=service.ledger.allowed_rows(),
        billable_rows=report.billable_row_count,
        shortfall=shortfall,
        price_due=report.price_due,
        shortfall_price=price_for_rows(shortfall, service.gateway.per_row_price),
        currency=report.currency,
    )


def _ledger(service: BulkDistanceService) -> LedgerResponse:
    return LedgerResponse(
        state=service.state.value,
        paid_rows=service.ledger.paid_rows,
        allowed_rows=service.ledger.allowed_rows(),
    )


def _result_response(result: ResultRow) -> ResultRowResponse:
    return ResultRowResponse(
        from_location=result.row.from_location,
        to_location=result.row.to_location,
        status=result.outcome.status,
        distance=result.outcome.label,
        distance_km=result.distance_km,
        duration_minutes=result.duration_minutes,
        vehicle_type=result.vehicle_type,
        co2_kg=result.co2_kg,
        co2_saved_kg=result.co2_saved_kg,
    )


def _parse_request(request: HttpRequest, schema: type[BaseModel]) -> Any:
    payload = _parse_json_payload(request)
    if isinstance(payload, JsonResponse):
        return payload

    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        return JsonResponse(
            {
                "error": {
                    "code": "validation_error",
                    "message": "Invalid request payload",
                    "details": exc.errors(include_url=False, include_context=False),
                }
            },
            status=400,
        )


def _parse_json_payload(request: HttpRequest) -> dict[str, Any] | JsonResponse:
    if not request.body:
        return {}

    try:
        payload = json.loads(request.body)
    except json.JSONDecodeError:
        return _error_response("invalid_json", "Request body must be valid JSON", status=400)

    if not isinstance(payload, dict):
        return _error_response("invalid_json", "JSON body must be an object", status=400)

    return payload


def _xlsx_response(content: bytes, filename: str) -> HttpResponse:
    response = HttpResponse(content, content_type=XLSX_CONTENT_TYPE)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


def _error_response(
    code: str, message: str, status: int, extra: dict[str, Any] | None = None
) -> JsonResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if extra:
        error.update(extra)
    return JsonResponse({"error": error}, status=status)
