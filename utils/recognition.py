"""Recognizer boundary: turn live frames into candidate student identifiers."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional, Protocol, Tuple

import cv2
import numpy as np

from .camera import CameraStream
from .cancellation import CancelToken
from .errors import CameraDeviceError, RecognizerError

LOGGER = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 1.0
DEFAULT_REPEAT_COOLDOWN = 3.0
MAX_CONSECUTIVE_READ_FAILURES = 30
PAYLOAD_ID_KEYS = ("student_id", "studentId", "id")


@dataclass(frozen=True)
class RecognitionCandidate:
    identifier: str
    payload: str
    symbology: str = "qr_code"


@dataclass(frozen=True)
class RecognitionResult:
    student_id: str
    raw_payload: str
    recognized_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "camera"
    symbology: str = "qr_code"

    @classmethod
    def from_candidate(cls, candidate: RecognitionCandidate) -> "RecognitionResult":
        return cls(
            student_id=candidate.identifier,
            raw_payload=candidate.payload,
            symbology=candidate.symbology,
        )

    @classmethod
    def manual(cls, identifier: str) -> "RecognitionResult":
        text = identifier.strip()
        return cls(student_id=text, raw_payload=text, source="manual", symbology="manual")


class Recognizer(Protocol):
    def detect(self, frame: np.ndarray) -> Optional[RecognitionCandidate]:
        ...


def identifier_from_payload(payload: str) -> Optional[str]:
    """Accept plain IDs or JSON card payloads such as ``{"student_id": "S123"}``."""
    text = (payload or "").strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        for key in PAYLOAD_ID_KEYS:
            value = data.get(key)
            if value not in (None, ""):
                return str(value).strip()
        return None
    return text


class CodeRecognizer:
    """OpenCV QR decoder, plus 1D barcodes when the build ships ``cv2.barcode``."""

    def __init__(self, *, enable_barcodes: bool = True) -> None:
        self._qr = cv2.QRCodeDetector()
        self._barcode = None
        if enable_barcodes and hasattr(cv2, "barcode"):
            try:
                self._barcode = cv2.barcode.BarcodeDetector()
            except cv2.error as exc:
                LOGGER.info("Barcode detector unavailable: %s", exc)

    @property
    def symbologies(self) -> Tuple[str, ...]:
        if self._barcode is None:
            return ("qr_code",)
        return ("qr_code", "code_128", "ean_13")

    def detect(self, frame: np.ndarray) -> Optional[RecognitionCandidate]:
        try:
            payload, _, _ = self._qr.detectAndDecode(frame)
        except cv2.error as exc:
            raise RecognizerError(f"QR decoding failed: {exc}") from exc
        if payload:
            identifier = identifier_from_payload(payload)
            if identifier:
                return RecognitionCandidate(identifier=identifier, payload=payload, symbology="qr_code")
        if self._barcode is None:
            return None
        # OpenCV >= 4.8 moved the typed variant to detectAndDecodeWithType; older builds return it directly.
        decode = getattr(self._barcode, "detectAndDecodeWithType", self._barcode.detectAndDecode)
        try:
            ok, infos, types, _ = decode(frame)
        except (cv2.error, ValueError) as exc:
            raise RecognizerError(f"Barcode decoding failed: {exc}") from exc
        if not ok:
            return None
        for info, kind in zip(infos or (), types or ()):
            identifier = identifier_from_payload(info)
            if identifier:
                return RecognitionCandidate(identifier=identifier, payload=info, symbology=str(kind or "barcode").lower())
        return None


@dataclass
class ScanFrame:
    frame: np.ndarray
    candidate: Optional[RecognitionCandidate] = None


class FrameScanner:
    """Restartable async sequence of frames with throttled recognition.

    Frames are read for every iteration (so previews stay live); the recognizer
    only runs every ``scan_interval`` seconds and only while ``detecting`` is
    set. The same identifier is not reported twice within ``repeat_cooldown``.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        *,
        scan_interval: float = DEFAULT_SCAN_INTERVAL,
        repeat_cooldown: float = DEFAULT_REPEAT_COOLDOWN,
        max_read_failures: int = MAX_CONSECUTIVE_READ_FAILURES,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[Executor] = None,
    ) -> None:
        self.recognizer = recognizer
        self.scan_interval = max(0.0, float(scan_interval))
        self.repeat_cooldown = max(0.0, float(repeat_cooldown))
        self.max_read_failures = max(1, int(max_read_failures))
        self.detecting = True
        self._clock = clock
        self._executor = executor
        self._last_scan_at: Optional[float] = None
        self._last_identifier: Optional[str] = None
        self._last_reported_at = 0.0

    def forget(self) -> None:
        """Allow the last identifier to be reported again right away."""
        self._last_identifier = None

    async def frames(self, stream: CameraStream, token: CancelToken) -> AsyncIterator[ScanFrame]:
        loop = asyncio.get_running_loop()
        failures = 0
        while not token.cancelled and stream.active:
            run_detection = self._detection_due()
            try:
                frame, candidate = await loop.run_in_executor(self._executor, self._read_and_detect, stream, run_detection)
            except RecognizerError as exc:
                LOGGER.warning("Recognition failed, continuing: %s", exc)
                continue
            if token.cancelled:
                return
            if frame is None:
                failures += 1
                if failures >= self.max_read_failures:
                    raise CameraDeviceError(
                        f"Camera stopped delivering frames after {failures} attempts.", source=stream.source
                    )
                await asyncio.sleep(0.01)
                continue
            failures = 0
            yield ScanFrame(frame=frame, candidate=self._filter_repeat(candidate))

    def _detection_due(self) -> bool:
        if not self.detecting:
            return False
        now = self._clock()
        if self._last_scan_at is not None and now - self._last_scan_at < self.scan_interval:
            return False
        self._last_scan_at = now
        return True

    def _read_and_detect(
        self, stream: CameraStream, run_detection: bool
    ) -> Tuple[Optional[np.ndarray], Optional[RecognitionCandidate]]:
        frame = stream.read()
        if frame is None or not run_detection:
            return frame, None
        try:
            return frame, self.recognizer.detect(frame)
        except RecognizerError:
            raise
        except Exception as exc:
            raise RecognizerError(str(exc)) from exc

    def _filter_repeat(self, candidate: Optional[RecognitionCandidate]) -> Optional[RecognitionCandidate]:
        if candidate is None:
            return None
        now = self._clock()
        if candidate.identifier == self._last_identifier and now - self._last_reported_at < self.repeat_cooldown:
            return None
        self._last_identifier = candidate.identifier
        self._last_reported_at = now
        return candidate


__all__ = [
    "CodeRecognizer",
    "FrameScanner",
    "RecognitionCandidate",
    "RecognitionResult",
    "Recognizer",
    "ScanFrame",
    "identifier_from_payload",
]
