"""Tests for engine wiring, settings validation and structured logging."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from src.config import Settings
from src.main import SLAEngine
from src.shared.infrastructure.logging import CustomJsonFormatter, get_context_logger
from src.sla.infrastructure.external import SlackClient
from tests.fakes import InMemoryTicketRepository, jkt

SAMPLE_FILE = Path(__file__).resolve().parent.parent / "reference_data.yaml"


@pytest.fixture
def reference_file(tmp_path) -> Path:
    return Path(shutil.copy(SAMPLE_FILE, tmp_path / "reference_data.yaml"))


@pytest.fixture
def slack_client() -> SlackClient:
    return SlackClient(
        webhook_url="https://hooks.slack.test/x",
        backoff_seconds=0,
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )


def _settings(reference_file: Path, **overrides) -> Settings:
    values = dict(environment="test", reference_data_path=reference_file, log_level="WARNING")
    values.update(overrides)
    return Settings(**values)


async def test_engine_wires_services_from_yaml(reference_file, slack_client):
    engine = SLAEngine(_settings(reference_file), InMemoryTicketRepository(), slack_client=slack_client)

    await engine.start(run_scheduler=False)
    try:
        result = await engine.sla_service.compute_due_date(jkt(2026, 10, 16, 16, 30), 120, 1, True)
        assert result.due_date == jkt(2026, 10, 19, 9, 30)
        assert engine.sweeper is not None
        assert engine.scheduler is None
        assert engine.watcher is not None
    finally:
        await engine.stop()

    assert engine.watcher is None


async def test_engine_runs_scheduler(reference_file, slack_client):
    engine = SLAEngine(
        _settings(reference_file, escalation_sweep_interval=3600),
        InMemoryTicketRepository(),
        slack_client=slack_client,
    )

    await engine.start()
    assert engine.scheduler.is_running

    await engine.stop()
    assert engine.scheduler is None


@pytest.mark.parametrize("values", [
    {"environment": "qa"},
    {"reference_source": "s3"},
    {"at_risk_threshold_percent": 150},
    {"transition_max_retries": 0},
])
def test_settings_validation(values):
    with pytest.raises(ValidationError):
        Settings(**values)


def test_json_formatter_redacts_secrets():
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.LogRecord("sla", logging.INFO, __file__, 1, "Slack configured", None, None)
    record.webhook_url = "https://hooks.slack.test/secret"
    record.ticket_id = 42

    output = json.loads(formatter.format(record))

    assert output["webhook_url"] == "***REDACTED***"
    assert output["ticket_id"] == 42
    assert output["environment"] == "test"
    assert output["message"] == "Slack configured"
    assert "timestamp" in output


def test_context_logger_merges_call_extra():
    logger = get_context_logger("sla.sweep", correlation_id="abc")

    _, kwargs = logger.process("Sweep completed", {"extra": {"escalated": 2}})

    assert kwargs["extra"] == {"correlation_id": "abc", "escalated": 2}
    assert get_context_logger("sla.sweep") is logging.getLogger("sla.sweep")
