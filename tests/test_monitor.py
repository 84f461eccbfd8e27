"""Tests for the monitoring pipeline."""

import logging
from datetime import timedelta

import pytest

from vigil.auth.models import User
from vigil.security.monitor import DataEvent


def _valid_certificate(**overrides):
    cert = {
        "userId": "guard-1",
        "certificateType": "WPBR",
        "certificateNumber": "WPBR-AB12CD34",
        "issuingAuthority": "Politie Nederland",
        "holderBsn": "ENC:0f9a",
        "expirationDate": "2027-01-01T00:00:00+00:00",
        "status": "pending",
    }
    cert.update(overrides)
    return cert


def test_event_is_audited_with_size_and_risk(engine):
    after = {"userId": "u1", "title": "Night shift"}
    result = engine.monitor.handle_event(DataEvent("jobs", "job-1", "create", after=after))

    assert result.user_id == "u1"
    assert not result.assessment.detected
    entries = engine.audit.get_events_for_resource("jobs", "job-1")
    assert len(entries) == 1
    assert entries[0].action == "create"
    assert entries[0].risk_level == "low"
    assert entries[0].metadata["data_size"] > 0
    assert entries[0].metadata["event_id"] == result.event_id


def test_acting_user_falls_back_to_auth_id(engine):
    result = engine.monitor.handle_event(
        DataEvent("jobs", "job-1", "update", before={}, after={"title": "x"}, auth_id="u2")
    )
    assert result.user_id == "u2"


def test_events_without_user_or_on_system_collections_are_skipped(engine):
    assert engine.monitor.handle_event(DataEvent("jobs", "job-1", "update", after={"a": 1})) is None
    assert engine.monitor.handle_event(
        DataEvent("security_audit", "x", "create", after={"userId": "u1"})
    ) is None
    assert engine.audit.count() == 0


def test_monitoring_fails_open(engine, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise RuntimeError("detector offline")

    monkeypatch.setattr(engine.detector, "evaluate", broken)
    with caplog.at_level(logging.ERROR):
        result = engine.monitor.handle_event(DataEvent("jobs", "job-1", "create", after={"userId": "u1"}))

    assert result is None
    assert "Security monitoring failed" in caplog.text

    engine.monitor.fail_open = False
    with pytest.raises(RuntimeError):
        engine.monitor.handle_event(DataEvent("jobs", "job-1", "create", after={"userId": "u1"}))


def test_mass_access_is_high_without_suspension(engine, clock):
    engine.users.save_user(User(id="u1", role="company"))
    for i in range(501):
        engine.audit.log_event("u1", "read", "users", f"user-{i}", timestamp=clock() - timedelta(minutes=5))

    result = engine.monitor.handle_event(DataEvent("users", "user-x", "read", auth_id="u1"))

    assert result.assessment.patterns == ["rapidFire", "massAccess"]
    assert result.audit_entry.risk_level == "high"
    assert not result.response.suspended
    assert not engine.users.get_user("u1").suspended
    assert engine.violations.get_violations("u1").type_counts == {"suspicious_activity": 1}


def test_unencrypted_bsn_suspends_once(engine):
    engine.users.save_user(User(id="guard-1", role="guard"))
    cert = _valid_certificate(holderBsn="123456782")

    first = engine.monitor.handle_event(DataEvent("certificates", "cert-1", "create", after=cert))
    second = engine.monitor.handle_event(DataEvent("certificates", "cert-1", "update", before=cert, after=cert))

    assert first.assessment.patterns == ["bsnAccess"]
    assert first.audit_entry.risk_level == "critical"
    assert first.response.suspended
    assert not second.response.suspended
    assert engine.users.get_user("guard-1").suspended
    assert len(engine.audit.get_events(action="account_suspended")) == 1

    assert not first.certificate.valid
    assert first.certificate.error == "BSN data must be encrypted"
    counts = engine.violations.get_violations("guard-1").type_counts
    assert counts == {"invalid_certificate": 1, "suspicious_activity": 2}


def test_valid_certificate_is_flagged_for_auto_verification(engine):
    result = engine.monitor.handle_event(
        DataEvent("certificates", "cert-1", "create", after=_valid_certificate())
    )
    assert result.certificate.valid
    assert result.certificate.auto_verify
    assert not result.assessment.detected
    assert engine.certificates.get("cert-1")["status"] == "pending"


def test_mass_access_with_unencrypted_bsn_suspends_once_across_retries(engine, clock):
    engine.users.save_user(User(id="guard-1", role="guard"))
    for i in range(600):
        engine.audit.log_event("guard-1", "read", "users", f"user-{i}", timestamp=clock() - timedelta(minutes=5))
    cert = _valid_certificate(holderBsn="123456782")
    event = DataEvent("certificates", "cert-1", "update", before=cert, after=cert)

    first = engine.monitor.handle_event(event)
    retry = engine.monitor.handle_event(event)

    assert first.assessment.patterns == ["rapidFire", "massAccess", "bsnAccess"]
    assert first.audit_entry.risk_level == "critical"
    assert retry.assessment.risk_level == first.assessment.risk_level
    assert first.response.suspended
    assert not retry.response.suspended
    assert len(engine.audit.get_events(action="account_suspended")) == 1
    assert engine.users.get_user("guard-1").suspension_type == "automatic"


def test_attributed_to_caller_replaces_foreign_owner():
    event = DataEvent(
        "certificates", "cert-1", "create", after={"userId": "admin-1", "x": 1}, auth_id="g1"
    )
    own = event.attributed_to_caller()

    assert own.acting_user() == "g1"
    assert own.after == {"userId": "g1", "x": 1}
    assert own.event_id == event.event_id
    assert event.after["userId"] == "admin-1"

    no_owner = DataEvent("jobs", "j1", "update", after={"title": "x"}, auth_id="g1")
    assert no_owner.attributed_to_caller().after == {"title": "x"}
