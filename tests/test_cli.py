"""Tests for the operator CLI."""

from click.testing import CliRunner

from vigil.cli import main


def _run(tmp_path, monkeypatch, *args):
    monkeypatch.setenv("VIGIL_HOME", str(tmp_path))
    monkeypatch.delenv("VIGIL_CONFIG", raising=False)
    return CliRunner().invoke(main, list(args))


def test_check_until_denied(tmp_path, monkeypatch):
    for _ in range(3):
        result = _run(tmp_path, monkeypatch, "check", "u1", "cert_uploads")
        assert result.exit_code == 0
        assert "Allowed" in result.output

    result = _run(tmp_path, monkeypatch, "check", "u1", "cert_uploads")
    assert result.exit_code == 1
    assert "Denied" in result.output

    result = _run(tmp_path, monkeypatch, "violations", "u1")
    assert result.exit_code == 0
    assert "rate_limit" in result.output


def test_assess_requires_admin(tmp_path, monkeypatch):
    _run(tmp_path, monkeypatch, "add-user", "ops", "--role", "guard")
    result = _run(tmp_path, monkeypatch, "assess", "--admin-id", "ops")
    assert result.exit_code == 1

    _run(tmp_path, monkeypatch, "add-user", "root", "--role", "admin")
    result = _run(tmp_path, monkeypatch, "assess", "--admin-id", "root")
    assert result.exit_code == 0
    assert "secure" in result.output


def test_sweep_and_audit_export(tmp_path, monkeypatch):
    result = _run(tmp_path, monkeypatch, "sweep")
    assert result.exit_code == 0
    assert "Maintenance complete" in result.output

    _run(tmp_path, monkeypatch, "add-user", "root", "--role", "admin")
    _run(tmp_path, monkeypatch, "assess", "--admin-id", "root")
    result = _run(tmp_path, monkeypatch, "audit", "--export", "json")
    assert result.exit_code == 0
    assert "manual_security_assessment" in result.output


def test_account_commands(tmp_path, monkeypatch):
    _run(tmp_path, monkeypatch, "add-user", "g1", "--role", "guard")
    result = _run(tmp_path, monkeypatch, "set-role", "g1", "company")
    assert result.exit_code == 0
    assert _run(tmp_path, monkeypatch, "set-role", "nobody", "admin").exit_code == 1

    result = _run(tmp_path, monkeypatch, "users")
    assert "g1" in result.output
    assert "company" in result.output

    assert _run(tmp_path, monkeypatch, "reinstate", "g1").exit_code == 0
    assert _run(tmp_path, monkeypatch, "reinstate", "nobody").exit_code == 1
    assert _run(tmp_path, monkeypatch, "revoke-key", "missing").exit_code == 1


def test_revoke_cert(tmp_path, monkeypatch):
    result = _run(tmp_path, monkeypatch, "revoke-cert", "WPBR", "WPBR-ABCD1234", "--reason", "fraud")
    assert result.exit_code == 0
    assert "Revoked" in result.output


def test_gdpr_commands(tmp_path, monkeypatch):
    from vigil.compliance.gdpr import GdprRequest
    from vigil.config import VigilConfig
    from vigil.engine import SecurityEngine

    engine = SecurityEngine(VigilConfig.for_directory(tmp_path))
    decision = engine.gdpr.submit(GdprRequest("u1", "access", "consent", ["profile"]))

    result = _run(tmp_path, monkeypatch, "gdpr-overdue")
    assert result.exit_code == 0
    assert "No overdue" in result.output

    result = _run(tmp_path, monkeypatch, "gdpr-complete", decision.request_id, "--by", "ops")
    assert result.exit_code == 0
    assert engine.gdpr.get(decision.request_id).status == "completed"
    assert _run(tmp_path, monkeypatch, "gdpr-complete", "missing").exit_code == 1
