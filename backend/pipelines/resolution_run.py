"""Operator job that previews or settles markets from the command line."""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db
from app.domain import ResolutionResult
from app.repositories import SettlementRepository
from app.services.resolution_service import ResolutionService
from app.services.settlement import SettlementFailedError


@dataclass(slots=True)
class ResolutionRequest:
    market_id: str
    winning_outcome_id: str
    actual_value: Decimal | None = None
    resolved_by: str | None = None
    resolution_source: str | None = None
    resolution_notes: str | None = None


@dataclass(slots=True)
class ResolutionSummary:
    requested: int = 0
    resolved: int = 0
    previewed: int = 0
    rejected: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested": self.requested,
            "resolved": self.resolved,
            "previewed": self.previewed,
            "rejected": self.rejected,
            "failed": self.failed,
            "results": self.results,
            "failures": self.failures,
        }


def _result_payload(result: ResolutionResult) -> dict[str, Any]:
    summary = result.payout_summary
    return {
        "market_id": result.market_id,
        "winning_outcome_id": result.winning_outcome_id,
        "actual_value": result.actual_value,
        "preview": result.preview,
        "success": result.success,
        "errors": [{"code": error.code, "message": error.message} for error in result.errors],
        "payout_summary": summary.to_dict() if result.success else None,
        "trendsetter_points": dict(result.trendsetter_points),
        "taste_match_pairs": len(result.taste_match_pairs),
        "balance_users": len(result.balance_user_ids),
    }


class ResolutionPipeline:
    """Run resolution requests one by one, retrying infrastructure failures."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        service: ResolutionService | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._service = service or ResolutionService(SettlementRepository(), settings=self.settings)
        self._sleep = sleep

    def run(
        self, requests: Sequence[ResolutionRequest], *, preview: bool = False
    ) -> ResolutionSummary:
        summary = ResolutionSummary()
        logger.info("Starting resolution run: markets={}, preview={}", len(requests), preview)

        for request in requests:
            summary.requested += 1
            try:
                result = self._resolve_with_retry(request, preview=preview)
            except SettlementFailedError as exc:
                summary.failed += 1
                summary.failures.append({"market_id": request.market_id, "reason": exc.message})
                continue

            summary.results.append(_result_payload(result))
            if not result.success:
                summary.rejected += 1
            elif preview:
                summary.previewed += 1
            else:
                summary.resolved += 1

        logger.info(
            "Resolution run finished: requested={}, resolved={}, previewed={}, rejected={}, failed={}",
            summary.requested,
            summary.resolved,
            summary.previewed,
            summary.rejected,
            summary.failed,
        )
        return summary

    def _resolve_with_retry(
        self, request: ResolutionRequest, *, preview: bool
    ) -> ResolutionResult:
        if preview:
            return self._service.preview(request.market_id, request.winning_outcome_id)

        attempts = self.settings.settlement_retry_attempts
        schedule = self.settings.settlement_retry_backoff_schedule
        for attempt in range(1, attempts + 1):
            try:
                return self._service.resolve(
                    request.market_id,
                    request.winning_outcome_id,
                    request.actual_value,
                    resolved_by=request.resolved_by,
                    resolution_source=request.resolution_source,
                    resolution_notes=request.resolution_notes,
                )
            except SettlementFailedError:
                if attempt >= attempts:
                    raise
                delay = schedule[min(attempt - 1, len(schedule) - 1)]
                logger.warning(
                    "Settlement of market {} failed (attempt {}/{}); retrying in {}s",
                    request.market_id,
                    attempt,
                    attempts,
                    delay,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


def _parse_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid actual value: {value!r}") from exc


def load_requests(path: Path) -> list[ResolutionRequest]:
    """Read resolution requests from a JSON array of objects."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Resolution batch file must contain a JSON array")

    requests: list[ResolutionRequest] = []
    for item in payload:
        requests.append(
            ResolutionRequest(
                market_id=str(item["market_id"]),
                winning_outcome_id=str(item["winning_outcome_id"]),
                actual_value=_parse_decimal(item.get("actual_value")),
                resolved_by=item.get("resolved_by"),
                resolution_source=item.get("resolution_source"),
                resolution_notes=item.get("resolution_notes"),
            )
        )
    return requests


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Preview or settle prediction markets with a known winning outcome",
    )
    parser.add_argument("--market-id", help="Market to resolve")
    parser.add_argument("--outcome-id", help="Winning outcome of --market-id")
    parser.add_argument(
        "--actual-value",
        type=_parse_decimal,
        default=None,
        help="Observed real-world value (required unless --preview is set)",
    )
    parser.add_argument(
        "--batch",
        type=Path,
        default=None,
        help="JSON file with a list of {market_id, winning_outcome_id, actual_value} objects",
    )
    parser.add_argument("--resolved-by", default=None, help="Operator recorded on the market")
    parser.add_argument(
        "--source",
        dest="resolution_source",
        default="manual",
        help="Where the outcome came from (e.g. manual, box_office_feed)",
    )
    parser.add_argument("--notes", dest="resolution_notes", default=None)
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Compute payouts and points without writing anything",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    args = parser.parse_args(argv)
    if args.batch is None and not (args.market_id and args.outcome_id):
        parser.error("either --batch or both --market-id and --outcome-id are required")
    return args


def _requests_from_args(args: argparse.Namespace) -> list[ResolutionRequest]:
    if args.batch is not None:
        return load_requests(args.batch)
    return [
        ResolutionRequest(
            market_id=args.market_id,
            winning_outcome_id=args.outcome_id,
            actual_value=args.actual_value,
            resolved_by=args.resolved_by,
            resolution_source=args.resolution_source,
            resolution_notes=args.resolution_notes,
        )
    ]


def _write_summary(summary: ResolutionSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Resolution summary written to {}", path)


def main(argv: Sequence[str] | None = None) -> ResolutionSummary:
    args = _parse_args(argv)
    settings = get_settings()
    init_db()
    pipeline = ResolutionPipeline(settings)
    summary = pipeline.run(_requests_from_args(args), preview=args.preview)

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
