# Overview: Service-layer operations for OCR extraction; wraps the external meter-reading service.

"""
OCR Extraction Adapter

WHY: Meter photos are read by an external image-recognition service. Each
call is network I/O that can be slow or fail, so:
- every image is extracted independently and concurrently
- every call is bounded by OCR_TIMEOUT_SECONDS
- a failure or timeout becomes confidence 0 for that image only

The adapter never touches the database; callers persist the results.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

import httpx
from flask import current_app

from ..models.flights import METER_TYPES
from ..validation import ExternalServiceError, LedgerError, MAX_METER_VALUE, to_decimal


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OcrResult:
    value: Decimal | None
    confidence: Decimal
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "OcrResult":
        return cls(value=None, confidence=Decimal("0"), error=error)


@dataclass(frozen=True)
class OcrRequest:
    image_log_id: int
    image_reference: str
    meter_type: str


class OcrAdapter:
    """Contract: extract(image_reference, meter_type) -> OcrResult, or raise ExternalServiceError."""

    def extract(self, image_reference: str, meter_type: str) -> OcrResult:
        raise NotImplementedError


class HttpOcrAdapter(OcrAdapter):
    """
    JSON-over-HTTP OCR client.

    POST {"image_url": ..., "meter_type": "HOBBS"|"TACH"}
    -> {"value": 1234.5, "confidence": 95}
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def extract(self, image_reference: str, meter_type: str) -> OcrResult:
        if meter_type not in METER_TYPES:
            raise ExternalServiceError(f"Unsupported meter type: {meter_type}")
        if not image_reference:
            raise ExternalServiceError(f"No image for {meter_type}")

        try:
            response = self._client.post(
                self.base_url,
                json={"image_url": image_reference, "meter_type": meter_type},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(f"OCR timed out for {meter_type}") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"OCR service returned {exc.response.status_code} for {meter_type}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError(f"OCR request failed for {meter_type}: {exc}") from exc

        return parse_ocr_payload(payload, meter_type)


def parse_ocr_payload(payload: dict, meter_type: str) -> OcrResult:
    """Validate the service response; out-of-range readings are rejected."""
    if not isinstance(payload, dict):
        raise ExternalServiceError(f"Malformed OCR response for {meter_type}")
    try:
        value = to_decimal(payload.get("value"), "value")
        confidence = to_decimal(payload.get("confidence"), "confidence", allow_none=True) or Decimal("0")
    except LedgerError as exc:
        raise ExternalServiceError(f"Invalid OCR value for {meter_type}: {exc}") from exc

    if value < 0 or value > MAX_METER_VALUE:
        raise ExternalServiceError(f"OCR value out of expected range for {meter_type}: {value}")
    confidence = max(Decimal("0"), min(Decimal("100"), confidence))
    return OcrResult(value=value, confidence=confidence)


def build_ocr_adapter(config) -> OcrAdapter:
    return HttpOcrAdapter(
        config["OCR_SERVICE_URL"],
        api_key=config.get("OCR_API_KEY"),
        timeout=config.get("OCR_TIMEOUT_SECONDS", 20.0),
    )


def get_ocr_adapter() -> OcrAdapter:
    """
    Adapter registered on the app (tests and alternate backends set
    app.extensions["ocr_adapter"]), else an HTTP adapter built from config.
    """
    adapter = current_app.extensions.get("ocr_adapter")
    if adapter is None:
        adapter = build_ocr_adapter(current_app.config)
        current_app.extensions["ocr_adapter"] = adapter
    return adapter


def _safe_extract(adapter: OcrAdapter, request: OcrRequest) -> OcrResult:
    try:
        return adapter.extract(request.image_reference, request.meter_type)
    except ExternalServiceError as exc:
        logger.warning("OCR failed for image %s (%s): %s", request.image_log_id, request.meter_type, exc)
        return OcrResult.failed(str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected OCR adapter error for image %s", request.image_log_id)
        return OcrResult.failed(f"{exc.__class__.__name__}: {exc}")


def extract_meter_values(
    adapter: OcrAdapter,
    requests: Iterable[OcrRequest],
    *,
    timeout: float,
    max_workers: int = 4,
) -> dict[int, OcrResult]:
    """
    Run every OCR request concurrently.

    Returns {image_log_id: OcrResult}. All requests share one deadline,
    `timeout` seconds after submission; a request still running at the
    deadline is recorded as a failure and abandoned.
    """
    requests = list(requests)
    if not requests:
        return {}

    results: dict[int, OcrResult] = {}
    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(requests))))
    deadline = time.monotonic() + timeout
    try:
        futures = {req.image_log_id: (req, executor.submit(_safe_extract, adapter, req)) for req in requests}
        for image_log_id, (req, future) in futures.items():
            try:
                remaining = max(0.0, deadline - time.monotonic())
                results[image_log_id] = future.result(timeout=remaining)
            except FutureTimeout:
                future.cancel()
                logger.warning("OCR timed out after %ss for image %s (%s)", timeout, image_log_id, req.meter_type)
                results[image_log_id] = OcrResult.failed(f"OCR timed out after {timeout}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return results
