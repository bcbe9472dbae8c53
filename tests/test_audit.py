from decimal import Decimal

from conftest import FakeAsyncSession, make_application, make_document
from app.api import deps
from app.core import context
from app.services import audit

CTX = deps.TenantContext(org_id="default")


def test_snapshot_uses_attribute_names():
    document = make_document(application=make_application(), doc_metadata={"pages": 2})

    snapshot = audit.model_snapshot(document, include=["status", "doc_metadata"])

    assert snapshot == {"status": "PENDING", "doc_metadata": {"pages": 2}}


def test_snapshot_serializes_decimals_and_ids():
    application = make_application()

    snapshot = audit.model_snapshot(application, exclude=["counter_offer"])

    assert snapshot["requested_amount"] == "50000.00"
    assert snapshot["id"] == str(application.id)
    assert "counter_offer" not in snapshot


def test_snapshot_of_nothing():
    assert audit.model_snapshot(None) == {}


def test_record_audit_log_diffs_nested_values():
    db = FakeAsyncSession()
    context.set_request_id("req-7")
    try:
        entry = audit.record_audit_log(
            db,
            CTX,
            actor_id=None,
            action="application.counter_offered",
            resource_type="application",
            resource_id="app-1",
            old_value={"status": "IN_REVIEW", "counter_offer": None},
            new_value={"status": "COUNTER_OFFERED", "counter_offer": {"amount": Decimal("30000")}},
        )
    finally:
        context.clear_context()

    assert db.added == [entry]
    assert entry.changes == {
        "counter_offer": {"from": None, "to": {"amount": "30000"}},
        "status": {"from": "IN_REVIEW", "to": "COUNTER_OFFERED"},
    }
    assert entry.summary == "application.counter_offered: counter_offer, status"
    assert entry.request_id == "req-7"


def test_record_audit_log_without_values():
    db = FakeAsyncSession()

    entry = audit.record_audit_log(
        db,
        CTX,
        actor_id=None,
        action="application.viewed",
        resource_type="application",
        resource_id="app-1",
    )

    assert entry.changes is None
    assert entry.summary == "application.viewed"
    assert entry.request_id is None
