"""Aggregation of per-device outcomes into one batch response."""

from __future__ import annotations

from collections.abc import Iterable

from push_dispatch.types.models import BatchResponse, BatchSummary, NotificationOutcome

__all__ = ["ResultAggregator"]


class ResultAggregator:
    """Derive the summary and response of one batch from its outcomes.

    Outcomes keep the order in which they were given.
    """

    def __init__(self, outcomes: Iterable[NotificationOutcome] = ()) -> None:
        self._outcomes: tuple[NotificationOutcome, ...] = tuple(outcomes)

    def summary(self) -> BatchSummary:
        total = len(self._outcomes)
        successful = sum(1 for outcome in self._outcomes if outcome.success)
        return BatchSummary(total=total, successful=successful, failed=total - successful)

    def build_response(self) -> BatchResponse:
        return BatchResponse(results=self._outcomes, summary=self.summary())
