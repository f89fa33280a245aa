from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from pos_core.core.actors import Actor, Capability, Role, RolePolicy
from pos_core.core.config import AuditSinkKind, EnvironmentMode, Settings
from pos_core.core.errors import BadRequest, Conflict, Forbidden, NotFound


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_defaults():
    settings = _settings(env_mode="development", audit_sink=None)
    assert settings.lock_stale_after == timedelta(minutes=30)
    assert settings.order_number_prefix == "ORD"
    assert settings.payment_number_prefix == "PAY"
    assert settings.is_development


def test_env_mode_is_case_insensitive():
    settings = _settings(env_mode="PRODUCTION", audit_sink=None)
    assert settings.env_mode == EnvironmentMode.PRODUCTION
    assert settings.is_production

    with pytest.raises(ValidationError):
        _settings(env_mode="qa")


def test_audit_sink_follows_environment():
    assert _settings(env_mode="development", audit_sink=None).resolved_audit_sink == AuditSinkKind.MEMORY
    assert _settings(env_mode="staging", audit_sink=None).resolved_audit_sink == AuditSinkKind.CELERY
    assert _settings(env_mode="production", audit_sink="memory").resolved_audit_sink == AuditSinkKind.MEMORY


def test_business_knobs_are_validated():
    assert _settings(tax_rate="0.08").tax_rate == Decimal("0.08")
    with pytest.raises(ValidationError):
        _settings(tax_rate="1.5")
    with pytest.raises(ValidationError):
        _settings(tax_rate="-0.1")
    with pytest.raises(ValidationError):
        _settings(lock_stale_minutes=0)
    assert _settings(lock_stale_minutes=45).lock_stale_after == timedelta(minutes=45)


def test_ticket_prefixes_fit_number_columns():
    assert _settings(order_number_prefix="TAKEAWAY").order_number_prefix == "TAKEAWAY"
    with pytest.raises(ValidationError):
        _settings(order_number_prefix="RESTAURANT-ORDER")
    with pytest.raises(ValidationError):
        _settings(payment_number_prefix="")


def test_env_variables_override(monkeypatch):
    monkeypatch.setenv("LOCK_STALE_MINUTES", "15")
    monkeypatch.setenv("ORDER_NUMBER_PREFIX", "TKT")
    settings = _settings()
    assert settings.lock_stale_minutes == 15
    assert settings.order_number_prefix == "TKT"


def test_role_capabilities():
    policy = RolePolicy()
    admin = Actor(id=1, role=Role.ADMIN)
    moderator = Actor(id=2, role=Role.MODERATOR)
    server = Actor(id=3, role=Role.SERVER)
    cashier = Actor(id=4, role=Role.CASHIER)

    assert all(policy.allows(admin, cap) for cap in Capability)
    assert policy.allows(moderator, Capability.ORDER_CANCEL)
    assert not policy.allows(moderator, Capability.PAYMENT_PROCESS)
    assert policy.allows(server, Capability.ORDER_CREATE)
    assert not policy.allows(server, Capability.ORDER_MODIFY_ANY)
    assert policy.allows(cashier, Capability.PAYMENT_PROCESS)
    assert not policy.allows(cashier, Capability.ORDER_CREATE)
    assert str(server) == "server#3"


def test_error_payloads():
    cases = [(BadRequest, 400), (Forbidden, 403), (NotFound, 404), (Conflict, 409)]
    for cls, status in cases:
        err = cls("boom", details={"id": 1})
        assert err.status_code == status
        assert err.to_dict() == {
            "success": False,
            "error": "boom",
            "code": err.code,
            "details": {"id": 1},
        }
    assert "details" not in NotFound("missing").to_dict()
