"""HTTP client for the external face matcher (CompreFace-compatible API)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional, Protocol

import httpx

from worktrack.core.errors import MatcherUnavailable
from worktrack.core.settings import settings

logger = logging.getLogger(__name__)

FACES_PATH = "/api/v1/recognition/faces"
RECOGNIZE_PATH = "/api/v1/recognition/recognize"


@dataclass(frozen=True)
class RecognitionResult:
    subject_id: Optional[str]
    similarity: float
    confidence: float
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class FaceMatcher(Protocol):
    def register(self, subject_id: str, sample: bytes) -> str: ...

    def recognize(self, sample: bytes) -> RecognitionResult: ...

    def delete(self, subject_id: str) -> None: ...


def subject_for_client(client_id: int) -> str:
    return f"client_{client_id}"


class CompreFaceMatcher:
    """Talks to the recognition service.

    Every transport error, timeout or non-2xx response surfaces as
    ``MatcherUnavailable``; the caller decides whether that is retryable.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        detection_threshold: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.matcher_base_url or "").strip().rstrip("/")
        self.api_key = api_key if api_key is not None else settings.matcher_api_key
        self.timeout_seconds = float(timeout_seconds or settings.matcher_timeout_seconds)
        self.detection_threshold = (
            detection_threshold if detection_threshold is not None else settings.matcher_detection_threshold
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        sample: Optional[bytes] = None,
    ) -> dict[str, Any]:
        if not self.enabled:
            raise MatcherUnavailable("Face matcher is not configured")
        url = f"{self.base_url}{path}"
        files = {"file": ("sample.jpg", sample, "image/jpeg")} if sample is not None else None
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.request(
                    method=method,
                    url=url,
                    headers=self._headers(),
                    params=params,
                    files=files,
                )
        except httpx.HTTPError as exc:
            logger.warning("matcher_request_error path=%s error=%s", path, exc)
            raise MatcherUnavailable(f"Face matcher unreachable: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "matcher_request_failed status=%s path=%s body=%s",
                response.status_code,
                path,
                response.text[:500],
            )
            raise MatcherUnavailable(f"Face matcher returned HTTP {response.status_code}")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise MatcherUnavailable("Face matcher returned a non-JSON body") from exc

    def register(self, subject_id: str, sample: bytes) -> str:
        payload = self._request(
            "POST",
            FACES_PATH,
            params={"subject": subject_id, "det_prob_threshold": self.detection_threshold},
            sample=sample,
        )
        image_id = payload.get("image_id")
        if not image_id:
            raise MatcherUnavailable("Face matcher did not return an image id")
        return str(image_id)

    def recognize(self, sample: bytes) -> RecognitionResult:
        payload = self._request(
            "POST",
            RECOGNIZE_PATH,
            params={"limit": 1, "prediction_count": 1, "det_prob_threshold": self.detection_threshold},
            sample=sample,
        )
        results = payload.get("result") or []
        if not results:
            return RecognitionResult(subject_id=None, similarity=0.0, confidence=0.0, raw=payload)
        face = results[0] or {}
        confidence = float((face.get("box") or {}).get("probability") or 0.0)
        subjects = face.get("subjects") or []
        if not subjects:
            return RecognitionResult(subject_id=None, similarity=0.0, confidence=confidence, raw=payload)
        best = subjects[0]
        return RecognitionResult(
            subject_id=best.get("subject"),
            similarity=float(best.get("similarity") or 0.0),
            confidence=confidence,
            raw=payload,
        )

    def delete(self, subject_id: str) -> None:
        self._request("DELETE", FACES_PATH, params={"subject": subject_id})


@lru_cache(maxsize=1)
def _default_matcher() -> CompreFaceMatcher:
    return CompreFaceMatcher()


def get_matcher() -> FaceMatcher:
    """FastAPI dependency; tests override it with an in-memory matcher."""
    return _default_matcher()
