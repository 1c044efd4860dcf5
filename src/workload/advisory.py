"""Optional advisory signal for assignment hints.

The advisory signal is an external suggestion service. Its answers may break
ties between equally scored candidates and are recorded in task metadata, but
the deterministic ranking is always computed first and stands whenever the
signal is slow, failing, or disagrees with the top score.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx

from config import settings
from errors import AdvisoryUnavailable
from services.http_client import ErrorConfig, ErrorStrategy, HttpClient
from tasks.snapshots import TaskSnapshot
from workload.assignment import CandidateScore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvisorySuggestion:
    """Suggested assignee with the advisor's confidence and reasoning."""

    staff_id: str
    confidence: float
    reasoning: str | None = None


class AdvisorySignal(Protocol):
    """Capability interface for assignment suggestions."""

    def suggest_assignment(
        self,
        task: TaskSnapshot,
        candidates: Sequence[CandidateScore],
    ) -> AdvisorySuggestion | None:
        ...


def _task_payload(task: TaskSnapshot) -> dict[str, object]:
    return {
        "id": task.id,
        "title": task.title,
        "priority": task.priority,
        "urgency_level": task.urgency_level,
        "category": task.category,
        "department": task.department,
        "estimated_duration_minutes": task.estimated_duration_minutes,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "specialty_tags": list(task.specialty_tags),
    }


def _candidate_payload(candidate: CandidateScore) -> dict[str, object]:
    return {
        "staff_id": candidate.staff_id,
        "score": round(candidate.score, 6),
        "weighted": round(candidate.weighted, 6),
        "role_suitability": candidate.role_suitability,
        "specialty_match": candidate.specialty_match,
    }


def parse_suggestion(payload: object) -> AdvisorySuggestion | None:
    """Parse an advisory response body into a suggestion."""
    if not isinstance(payload, dict):
        raise AdvisoryUnavailable("invalid_response", "Advisory response must be an object.")
    staff_id = payload.get("staff_id")
    if staff_id is None:
        return None
    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError):
        raise AdvisoryUnavailable(
            "invalid_response",
            "Advisory confidence must be numeric.",
            {"confidence": payload.get("confidence")},
        ) from None
    reasoning = payload.get("reasoning")
    return AdvisorySuggestion(
        staff_id=str(staff_id),
        confidence=min(1.0, max(0.0, confidence)),
        reasoning=str(reasoning) if reasoning is not None else None,
    )


class HttpAdvisorySignal:
    """Advisory signal backed by an HTTP suggestion endpoint."""

    def __init__(self, url: str, client: HttpClient | None = None) -> None:
        """Initialize the signal with an endpoint URL and HTTP client."""
        self._url = url
        self._client = client or HttpClient(
            timeout=settings.advisory.timeout_seconds,
            error_config=ErrorConfig(strategy=ErrorStrategy.RAISE),
        )

    def suggest_assignment(
        self,
        task: TaskSnapshot,
        candidates: Sequence[CandidateScore],
    ) -> AdvisorySuggestion | None:
        """Post the task and ranked candidates and parse the suggestion."""
        body = {
            "task": _task_payload(task),
            "candidates": [_candidate_payload(candidate) for candidate in candidates],
        }
        try:
            response = self._client.post(self._url, json=body)
        except httpx.HTTPError as exc:
            raise AdvisoryUnavailable(
                "request_failed",
                f"Advisory request failed: {exc}",
                {"url": self._url},
            ) from exc
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise AdvisoryUnavailable(
                "invalid_response",
                "Advisory response was not JSON.",
                {"url": self._url},
            ) from exc
        return parse_suggestion(payload)


class BoundedAdvisory:
    """Call an advisory signal with a hard timeout; never raises."""

    def __init__(
        self,
        signal: AdvisorySignal,
        *,
        timeout_seconds: float | None = None,
        max_workers: int = 2,
    ) -> None:
        """Initialize the wrapper around an advisory signal."""
        self._signal = signal
        self._timeout = (
            timeout_seconds if timeout_seconds is not None else settings.advisory.timeout_seconds
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="advisory",
        )

    def suggest(
        self,
        task: TaskSnapshot,
        candidates: Sequence[CandidateScore],
    ) -> AdvisorySuggestion | None:
        """Return a suggestion for one of the candidates, or None."""
        if not candidates:
            return None
        future = self._executor.submit(self._signal.suggest_assignment, task, list(candidates))
        try:
            suggestion = future.result(timeout=self._timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Advisory signal timed out after %.2fs for task %s.",
                self._timeout,
                task.id,
            )
            return None
        except AdvisoryUnavailable as exc:
            logger.warning("Advisory signal unavailable for task %s: %s", task.id, exc.message)
            return None
        except Exception:
            logger.exception("Advisory signal failed for task %s.", task.id)
            return None

        if suggestion is None:
            return None
        known = {candidate.staff_id for candidate in candidates}
        if suggestion.staff_id not in known:
            logger.info(
                "Ignoring advisory suggestion %s for task %s: not an eligible candidate.",
                suggestion.staff_id,
                task.id,
            )
            return None
        return suggestion

    def close(self) -> None:
        """Release the worker threads without waiting for stuck calls."""
        self._executor.shutdown(wait=False, cancel_futures=True)


def build_advisory() -> BoundedAdvisory | None:
    """Build the configured advisory wrapper, or None when disabled."""
    if not settings.advisory.enabled or not settings.advisory.url:
        return None
    return BoundedAdvisory(HttpAdvisorySignal(settings.advisory.url))
