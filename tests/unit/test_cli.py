import re

from typer.testing import CliRunner

from chainflow.cli import app
from chainflow.status import InMemoryStatusSource

runner = CliRunner()


def _write_fast_config(tmp_path, monkeypatch):
    config_path = tmp_path / "chainflow.yaml"
    config_path.write_text(
        "engine:\n  settle_delay: 0\npoller:\n  interval: 0\n  max_attempts: 3\n  mint_grace_period: 0\n"
    )
    monkeypatch.setenv("CHAINFLOW_CONFIG", str(config_path))


def test_kinds_lists_every_workflow():
    result = runner.invoke(app, ["workflow", "kinds"])
    assert result.exit_code == 0, result.output
    for kind in (
        "bridge_send (USDC)",
        "bridge_redeem (OFTUSDC)",
        "vault_deposit (OFTUSDC)",
        "rent_harvest",
        "liquidation_deposit",
        "nav_update",
        "stacks_deposit (sBTC)",
    ):
        assert kind in result.output
    assert "Fee quote: quoteSend" in result.output
    assert "Confirmation: poller" in result.output


def test_simulate_bridge_send_with_quote(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["workflow", "simulate", "bridge_send", "100"])
    assert result.exit_code == 0, result.output
    assert "(bridge_send): idle" in result.output
    assert (
        "History: awaiting_permission -> permission_granted -> awaiting_action -> confirmed -> idle"
        in result.output
    )
    assert "Permission submissions: 1" in result.output
    assert "Action submissions: 1" in result.output
    assert "Fee: 0.00025 (quoted)" in result.output


def test_simulate_uses_fallback_fee_when_quote_fails(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(
        app, ["workflow", "simulate", "bridge_send", "100", "--quote-fails"]
    )
    assert result.exit_code == 0, result.output
    assert "Fee: 0.001 (fallback)" in result.output


def test_simulate_skips_permission_with_sufficient_allowance(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(
        app, ["workflow", "simulate", "vault_deposit", "2.5", "--allowance", "10"]
    )
    assert result.exit_code == 0, result.output
    assert "Permission submissions: 0" in result.output
    assert "Action submissions: 1" in result.output
    assert "permission_granted" not in result.output


def test_simulate_failed_permission_exits_nonzero(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(
        app, ["workflow", "simulate", "vault_deposit", "1", "--fail-step", "permission"]
    )
    assert result.exit_code == 1
    assert "(vault_deposit): failed" in result.output
    assert "Action submissions: 0" in result.output
    assert "Error: execution_failed" in result.output


def test_simulate_rejection_returns_to_idle(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["workflow", "simulate", "nav_update", "1", "--reject"])
    assert result.exit_code == 0, result.output
    assert "History: awaiting_permission -> awaiting_action -> idle" in result.output
    assert "Action submissions: 0" in result.output


def test_simulate_stacks_deposit_records_minted_deposit(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["workflow", "simulate", "stacks_deposit", "0.5"])
    assert result.exit_code == 0, result.output
    assert re.search(r"Deposit \S+: minted \(0x[0-9a-f]+\)", result.output)


def test_simulate_rejects_excess_precision(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["workflow", "simulate", "bridge_send", "1.1234567"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_simulate_unknown_kind(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["workflow", "simulate", "teleport", "1"])
    assert result.exit_code == 1
    assert "Unsupported workflow kind" in result.output


def test_deposit_track_confirms(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    source = InMemoryStatusSource()
    source.script("0xabc", ["pending", "success"])
    monkeypatch.setattr("chainflow.cli.get_status_source", lambda config: source)

    result = runner.invoke(app, ["deposit", "track", "0xabc"])
    assert result.exit_code == 0, result.output
    assert "Attempt 1: pending" in result.output
    assert "Attempt 2: confirmed" in result.output
    assert "Attempt 2: minted" in result.output


def test_deposit_track_failed(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    source = InMemoryStatusSource()
    source.script("0xbad", ["abort_by_post_condition"])
    monkeypatch.setattr("chainflow.cli.get_status_source", lambda config: source)

    result = runner.invoke(app, ["deposit", "track", "0xbad"])
    assert result.exit_code == 1
    assert "Attempt 1: failed" in result.output


def test_deposit_track_still_pending(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(
        app, ["deposit", "track", "0xslow", "--interval", "0", "--max-attempts", "2"]
    )
    assert result.exit_code == 2
    assert "Attempt 2: pending" in result.output
    assert "Still pending" in result.output


def test_config_show(tmp_path, monkeypatch):
    _write_fast_config(tmp_path, monkeypatch)
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0, result.output
    assert "fallback_fee: '0.001'" in result.output
    assert "mint_grace_period: 0.0" in result.output
    assert "base_url: http://localhost:3999" in result.output
