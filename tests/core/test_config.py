from __future__ import annotations

import pytest

from mcp_alert_triage_server.core.config import TriageConfig, resolve_config
from mcp_alert_triage_server.core.models import AggregationMode

_ENV = (
    "ALERT_TRIAGE_ES_URL",
    "ALERT_TRIAGE_INDEX",
    "ALERT_TRIAGE_PAGE_SIZE",
    "ALERT_TRIAGE_BULK_SIZE",
    "ALERT_TRIAGE_MAX_JOB_ITERATIONS",
    "ALERT_TRIAGE_TIMEOUT",
    "ALERT_TRIAGE_INBOX_AGGREGATION",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_env() -> None:
    cfg = resolve_config()
    assert cfg == TriageConfig()
    assert cfg.bulk_batch_size == 1000
    assert cfg.default_inbox_aggregation is AggregationMode.NONE


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALERT_TRIAGE_ES_URL", "http://search:9200/")
    monkeypatch.setenv("ALERT_TRIAGE_INDEX", "suricata-*")
    monkeypatch.setenv("ALERT_TRIAGE_PAGE_SIZE", "50")
    monkeypatch.setenv("ALERT_TRIAGE_BULK_SIZE", "200")
    monkeypatch.setenv("ALERT_TRIAGE_TIMEOUT", "2.5")
    monkeypatch.setenv("ALERT_TRIAGE_INBOX_AGGREGATION", "Signature+Src")

    cfg = resolve_config()

    assert cfg.elasticsearch_url == "http://search:9200"
    assert cfg.index == "suricata-*"
    assert cfg.page_size == 50
    assert cfg.bulk_batch_size == 200
    assert cfg.request_timeout == 2.5
    assert cfg.default_inbox_aggregation is AggregationMode.SIGNATURE_SRC


def test_overrides_apply_on_top_of_given_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALERT_TRIAGE_PAGE_SIZE", "5")
    cfg = resolve_config(TriageConfig(index="custom"))
    assert (cfg.index, cfg.page_size) == ("custom", 5)


@pytest.mark.parametrize(
    "name,value",
    [
        ("ALERT_TRIAGE_PAGE_SIZE", "abc"),
        ("ALERT_TRIAGE_BULK_SIZE", "0"),
        ("ALERT_TRIAGE_MAX_JOB_ITERATIONS", "-3"),
        ("ALERT_TRIAGE_TIMEOUT", "0"),
        ("ALERT_TRIAGE_INBOX_AGGREGATION", "severity"),
    ],
)
def test_invalid_values_name_the_variable(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        resolve_config()
