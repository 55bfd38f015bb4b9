"""Tests for the discovery and audit workflows and their command line tools."""
from __future__ import annotations

import json
import logging
from importlib import util
from pathlib import Path

import pytest
import yaml

from intent_core import workflow
from intent_core.embeddings import EmbeddingClient
from intent_core.errors import ConfigError
from intent_core.workflow import AuditOptions, DiscoveryOptions, audit_matches, discover_intents
from stubs import StubProvider

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _load_tool(name: str):
    spec = util.spec_from_file_location(f"tool_{name}", PROJECT_ROOT / "tools" / f"{name}.py")
    assert spec and spec.loader
    module = util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(autouse=True)
def _restore_root_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    tickets = [
        {"ticket_id": i, "subject": "Login", "customer_question": f"I cannot log in (try {i})"}
        for i in range(1, 7)
    ]
    tickets += [
        {
            "ticket_id": 100 + i,
            "subject": "Battery",
            "customer_question": f"The smart tag battery died ({i})",
            "intent": "SmartTagBatteryReplace",
            "intent_confidence": 0.8,
            "is_new_intent": True,
        }
        for i in range(5)
    ]
    tickets.append(
        {
            "ticket_id": 200,
            "subject": "Lost tag",
            "customer_question": "I lost my QR tag and need to activate a new one",
            "intent": "QRTagActivationNew",
            "is_new_intent": True,
        }
    )
    (tmp_path / "tickets.json").write_text(json.dumps(tickets), encoding="utf-8")
    (tmp_path / "canonical.yaml").write_text(
        yaml.safe_dump(
            {
                "intents": [
                    {"intent_id": "LoginIssue", "category": "Account"},
                    {"intent_id": "QRTagLost", "category": "QR Tag"},
                ]
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "rules.yaml").write_text(
        "rules:\n  - intent: QRTagLost\n    pattern: 'lost.*qr'\n", encoding="utf-8"
    )
    config = {
        "embeddings": {"base_url": "https://api.example.com/v1", "api_key": "secret", "batch_size": 4},
        "sources": {"tickets": "tickets.json", "canonical_intents": "canonical.yaml"},
        "discovery": {"min_cluster_size": 5},
        "audit": {"regex_rules_file": "rules.yaml"},
        "reporting": {"output_directory": "reports"},
        "logging": {
            "console": {"enabled": False},
            "file": {"enabled": True, "level": "DEBUG", "path": str(tmp_path / "logs" / "run.log")},
        },
    }
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")

    provider = StubProvider(
        [
            ("intent: loginissue", [1.0, 0.0, 0.0]),
            ("intent: qrtaglost", [0.0, 0.0, 1.0]),
            ("log in", [1.0, 0.0, 0.0]),
            ("battery", [0.0, 1.0, 0.0]),
        ],
        default=[0.0, 0.0, 1.0],
    )
    monkeypatch.setattr(workflow, "_create_embedding_client", lambda config: provider)
    return tmp_path


def test_discover_intents_writes_report_bundle(workspace: Path) -> None:
    options = DiscoveryOptions(config_path=str(workspace / "config.yaml"), show_console_log=True)

    report_root = discover_intents(options, base_dir=workspace)

    assert report_root.parent == workspace / "reports"
    assert report_root.name.startswith("intent_discovery_")
    data = json.loads((report_root / "discovery.json").read_text(encoding="utf-8"))
    assert data["metadata"]["total_clusters"] == 2
    assert [c["nearest"]["matched_intent_id"] for c in data["map_to_existing"]] == ["LoginIssue"]
    assert [c["suggested_label"] for c in data["proposed_new_intents"]] == ["SmartTagBatteryReplace"]
    assert (report_root / "discovery.html").exists()
    assert (report_root / "clusters.csv").exists()
    assert (workspace / "logs" / "run.log").exists()


def test_discover_intents_honours_requested_formats(workspace: Path, capsys: pytest.CaptureFixture) -> None:
    options = DiscoveryOptions(
        config_path=str(workspace / "config.yaml"),
        output_directory=str(workspace / "custom"),
        formats=["JSON"],
    )

    report_root = discover_intents(options, base_dir=workspace)

    assert sorted(path.name for path in report_root.iterdir()) == ["discovery.json"]
    assert report_root.parent == workspace / "custom"
    assert "Intent discovery complete" in capsys.readouterr().out


def test_audit_matches_writes_json_and_text(workspace: Path) -> None:
    options = AuditOptions(config_path=str(workspace / "config.yaml"), show_console_log=True)

    report_root = audit_matches(options, base_dir=workspace)

    data = json.loads((report_root / "audit.json").read_text(encoding="utf-8"))
    assert data["summary"]["total_intents"] == 2
    [finding] = data["findings"]
    assert finding["assigned_intent"] == "QRTagActivationNew"
    assert finding["match"]["method"] == "regex"
    assert finding["proposed_fix"]["fix_type"] == "tighten_regex"
    [candidate] = data["promotion_candidates"]
    assert candidate["intent_id"] == "SmartTagBatteryReplace"
    assert candidate["recommended_action"] == "create_canonical_now"
    text = (report_root / "audit_report.txt").read_text(encoding="utf-8")
    assert "PART 3: PROMOTION PLAN" in text


def test_missing_input_file_is_a_config_error(workspace: Path) -> None:
    options = DiscoveryOptions(config_path=str(workspace / "config.yaml"), tickets_path="absent.json")

    with pytest.raises(ConfigError):
        discover_intents(options, base_dir=workspace)


def test_discover_tool_main_returns_zero(workspace: Path, capsys: pytest.CaptureFixture) -> None:
    tool = _load_tool("discover_intents")

    exit_code = tool.main(
        [
            "--config", str(workspace / "config.yaml"),
            "--tickets", str(workspace / "tickets.json"),
            "--canonical", str(workspace / "canonical.yaml"),
            "--output-directory", str(workspace / "cli"),
            "--show-console-log",
        ]
    )

    assert exit_code == 0
    assert "Report bundle available at" in capsys.readouterr().out
    assert len(list((workspace / "cli").iterdir())) == 1


def test_audit_tool_main_reports_failures(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    tool = _load_tool("audit_matches")

    exit_code = tool.main(["--config", str(tmp_path / "missing.yaml")])

    assert exit_code == 1
    assert "Error:" in capsys.readouterr().err


def test_create_embedding_client_reads_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_EMBEDDING_KEY", "from-env")

    client = workflow._create_embedding_client(
        {"embeddings": {"base_url": "https://api.example.com/v1", "api_key_env": "TEST_EMBEDDING_KEY"}}
    )

    assert isinstance(client, EmbeddingClient)
    assert client.session.headers["Authorization"] == "Bearer from-env"


def test_create_embedding_client_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigError):
        workflow._create_embedding_client({"embeddings": {"base_url": "https://api.example.com"}})
    with pytest.raises(ConfigError):
        workflow._create_embedding_client({"embeddings": {"api_key": "x"}})
