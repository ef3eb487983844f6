from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from app.domain import ResolutionError, ResolutionResult
from app.services.settlement import SettlementFailedError
from conftest import SCENARIO_BETS
from pipelines import resolution_run
from pipelines.resolution_run import ResolutionPipeline, ResolutionRequest, load_requests


def _ok(market_id: str = "m-1") -> ResolutionResult:
    return ResolutionResult(market_id=market_id, winning_outcome_id="x", success=True)


def test_pipeline_resolves_against_database(service, seed_market, test_settings):
    seed_market(bets=SCENARIO_BETS)
    pipeline = ResolutionPipeline(test_settings, service=service, sleep=lambda _: None)

    summary = pipeline.run(
        [ResolutionRequest("m-1", "m-1:x", Decimal("10")), ResolutionRequest("m-1", "m-1:x", Decimal("10"))]
    )

    assert summary.requested == 2
    assert summary.resolved == 1
    assert summary.rejected == 1
    assert summary.results[1]["errors"][0]["code"] == "market_already_terminal"
    assert summary.results[0]["trendsetter_points"] == {"user-a": 20, "user-b": 25}


def test_preview_run_counts_previews(service, seed_market, test_settings):
    seed_market(bets=SCENARIO_BETS)
    pipeline = ResolutionPipeline(test_settings, service=service)

    summary = pipeline.run([ResolutionRequest("m-1", "m-1:y")], preview=True)

    assert summary.previewed == 1
    assert summary.resolved == 0
    assert summary.results[0]["preview"] is True


def test_settlement_failures_are_retried(test_settings):
    service = MagicMock()
    service.resolve.side_effect = [SettlementFailedError("locked"), _ok()]
    delays: list[float] = []
    pipeline = ResolutionPipeline(test_settings, service=service, sleep=delays.append)

    summary = pipeline.run([ResolutionRequest("m-1", "x", Decimal("1"))])

    assert summary.resolved == 1
    assert service.resolve.call_count == 2
    assert delays == [0.0]


def test_exhausted_retries_are_reported_as_failures(test_settings):
    service = MagicMock()
    service.resolve.side_effect = SettlementFailedError("database unavailable")
    pipeline = ResolutionPipeline(test_settings, service=service, sleep=lambda _: None)

    summary = pipeline.run(
        [ResolutionRequest("m-1", "x", Decimal("1")), ResolutionRequest("m-2", "y", Decimal("2"))]
    )

    assert summary.failed == 2
    assert service.resolve.call_count == 2 * test_settings.settlement_retry_attempts
    assert summary.failures[0] == {"market_id": "m-1", "reason": "database unavailable"}


def test_rejections_are_not_retried(test_settings):
    service = MagicMock()
    service.resolve.return_value = ResolutionResult(
        market_id="m-1",
        winning_outcome_id="x",
        errors=[ResolutionError("invalid_outcome", "unknown outcome")],
    )
    pipeline = ResolutionPipeline(test_settings, service=service)

    summary = pipeline.run([ResolutionRequest("m-1", "x", Decimal("1"))])

    assert summary.rejected == 1
    service.resolve.assert_called_once()


def test_load_requests_reads_batch_file(tmp_path):
    path = tmp_path / "batch.json"
    path.write_text(
        json.dumps(
            [
                {"market_id": "m-1", "winning_outcome_id": "x", "actual_value": "12.5"},
                {"market_id": 7, "winning_outcome_id": "y", "resolution_source": "feed"},
            ]
        )
    )

    requests = load_requests(path)

    assert requests[0].actual_value == Decimal("12.5")
    assert requests[1].market_id == "7"
    assert requests[1].actual_value is None
    assert requests[1].resolution_source == "feed"


def test_load_requests_rejects_non_list(tmp_path):
    path = tmp_path / "batch.json"
    path.write_text(json.dumps({"market_id": "m-1"}))

    with pytest.raises(ValueError):
        load_requests(path)


def test_main_writes_summary(monkeypatch, tmp_path, test_settings):
    service = MagicMock()
    service.resolve.return_value = _ok()
    monkeypatch.setattr(resolution_run, "get_settings", lambda: test_settings)
    monkeypatch.setattr(resolution_run, "init_db", lambda: None)
    monkeypatch.setattr(
        resolution_run,
        "ResolutionPipeline",
        lambda settings: ResolutionPipeline(settings, service=service),
    )
    summary_path = tmp_path / "out" / "summary.json"

    summary = resolution_run.main(
        [
            "--market-id",
            "m-1",
            "--outcome-id",
            "x",
            "--actual-value",
            "3.5",
            "--resolved-by",
            "ops",
            "--summary-path",
            str(summary_path),
        ]
    )

    assert summary.resolved == 1
    service.resolve.assert_called_once_with(
        "m-1",
        "x",
        Decimal("3.5"),
        resolved_by="ops",
        resolution_source="manual",
        resolution_notes=None,
    )
    written = json.loads(summary_path.read_text())
    assert written["resolved"] == 1
    assert written["results"][0]["market_id"] == "m-1"


def test_main_requires_market_or_batch():
    with pytest.raises(SystemExit):
        resolution_run.main(["--outcome-id", "x"])
