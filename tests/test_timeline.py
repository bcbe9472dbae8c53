from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import BASE_TIME, FakeAsyncSession, FakeResult, entity_handler, make_application, make_staff_user
from app.api import deps
from app.models.lifecycle_event import LifecycleEvent
from app.models.user import StaffUser
from app.services import timeline

CTX = deps.TenantContext(org_id="default")


def _event(sequence: int, action: str, payload: dict, *, actor_id=None, minutes: int = 0) -> LifecycleEvent:
    return LifecycleEvent(
        id=uuid4(),
        org_id="default",
        application_id=uuid4(),
        sequence=sequence,
        action=action,
        actor_id=actor_id,
        payload=payload,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.mark.parametrize(
    "action,payload,expected",
    [
        (
            "STATUS_CHANGE",
            {"kind": "transition", "old_status": "SUBMITTED", "new_status": "IN_REVIEW", "reason": None},
            "Status changed to In review",
        ),
        (
            "STATUS_CHANGE",
            {"kind": "automatic", "new_status": "DOCS_PENDING", "reason": "Document rejected: Selfie"},
            "Status changed to Documents pending: Document rejected: Selfie",
        ),
        (
            "STATUS_CHANGE",
            {"kind": "counter_offer", "new_status": "COUNTER_OFFERED", "offer": {"amount": "25000.5", "term_months": 18}},
            "Counter-offer: 25,000.50 over 18 months",
        ),
        (
            "STATUS_CHANGE",
            {"kind": "reassigned", "assignee_name": "Luis Analyst"},
            "Application assigned to Luis Analyst",
        ),
        ("DOC_UPLOADED", {"document_type": "INE_FRONT"}, "Document uploaded: INE (front)"),
        ("DOC_UPLOADED", {"document_type": "SELFIE", "is_replacement": True}, "Document replaced: Selfie"),
        ("DOC_APPROVED", {"document_type": "CURP"}, "Document approved: CURP"),
        (
            "DOC_REJECTED",
            {"document_type": "PROOF_ADDRESS", "reason": "Older than 3 months"},
            "Document rejected: Proof of address - Older than 3 months",
        ),
        ("DOC_UNAPPROVED", {"document_type": "PAYSLIP_1"}, "Document review reverted: Payslip 1"),
        (
            "REF_VERIFIED",
            {"reference_name": "Juan Perez", "result": "NO_ANSWER"},
            "Reference verified: Juan Perez (No answer)",
        ),
        ("NOTE_ADDED", {"preview": "Called the employer"}, "Note added: Called the employer"),
        ("DATA_VERIFIED", {"field": "curp", "action": "reject"}, "Field rejected: CURP"),
        ("DATA_VERIFIED", {"field": "phone", "action": "verify"}, "Field verified: Phone"),
        (
            "DATA_CORRECTED",
            {"field": "email", "old_value": "a@x.mx", "new_value": "b@x.mx"},
            "Field corrected: Email (a@x.mx → b@x.mx)",
        ),
        ("BANK_ACCOUNT_VERIFIED", {"account_masked": "****1234"}, "Bank account verified: ****1234"),
        ("BANK_ACCOUNT_UNVERIFIED", {"account_masked": "****1234"}, "Bank account unverified: ****1234"),
    ],
)
def test_describe_event(action, payload, expected):
    assert timeline.describe_event(action, payload) == expected


def test_entries_are_newest_first_with_sequence_tie_break():
    events = [
        _event(1, "NOTE_ADDED", {"preview": "first"}, minutes=0),
        _event(2, "NOTE_ADDED", {"preview": "second"}, minutes=5),
        _event(3, "NOTE_ADDED", {"preview": "third"}, minutes=5),
    ]

    entries = list(timeline.Timeline(events, {}))

    assert [entry.id for entry in entries] == [3, 2, 1]


def test_iteration_is_repeatable():
    events = [_event(1, "DOC_APPROVED", {"document_type": "CURP"}), _event(2, "NOTE_ADDED", {"preview": "x"}, minutes=1)]
    view = timeline.Timeline(events, {})

    first = [entry.model_dump() for entry in view]
    second = [entry.model_dump() for entry in view]

    assert first == second
    assert len(view) == 2


def test_authors_resolved_with_system_fallback():
    known = uuid4()
    unknown = uuid4()
    events = [
        _event(1, "NOTE_ADDED", {"preview": "a"}, actor_id=known),
        _event(2, "NOTE_ADDED", {"preview": "b"}, actor_id=unknown, minutes=1),
        _event(3, "STATUS_CHANGE", {"kind": "automatic", "new_status": "IN_REVIEW"}, minutes=2),
    ]

    entries = list(timeline.Timeline(events, {str(known): "Ana Reviewer"}))
    authors = {entry.id: entry.author for entry in entries}

    assert authors == {1: "Ana Reviewer", 2: "System", 3: "System"}
    assert entries[-1].actor_id == str(known)


def test_status_change_metadata_carries_old_and_new_status():
    event = _event(
        4,
        "STATUS_CHANGE",
        {"kind": "transition", "old_status": "IN_REVIEW", "new_status": "REJECTED", "reason": "Low score"},
    )

    entry = timeline.Timeline([event], {}).render(event)

    assert entry.metadata.old_value == "IN_REVIEW"
    assert entry.metadata.new_value == "REJECTED"
    assert entry.metadata.reason == "Low score"


def test_replacement_metadata():
    event = _event(
        1,
        "DOC_UPLOADED",
        {
            "document_type": "SELFIE",
            "is_replacement": True,
            "old_file": {"name": "old.jpg"},
            "new_file": {"name": "new.jpg"},
        },
    )

    metadata = timeline.Timeline([event], {}).render(event).metadata

    assert metadata.is_replacement is True
    assert metadata.old_file == {"name": "old.jpg"}
    assert metadata.new_file == {"name": "new.jpg"}
    assert metadata.document_label == "Selfie"


def test_unknown_status_value_is_shown_raw():
    text = timeline.describe_event("STATUS_CHANGE", {"kind": "transition", "new_status": "ARCHIVED"})

    assert text == "Status changed to ARCHIVED"


@pytest.mark.asyncio
async def test_build_timeline_resolves_names_in_one_query():
    application = make_application()
    reviewer = make_staff_user(full_name="Ana Reviewer")
    events = [
        _event(1, "NOTE_ADDED", {"preview": "a"}, actor_id=reviewer.id),
        _event(2, "NOTE_ADDED", {"preview": "b"}, actor_id=reviewer.id, minutes=1),
    ]
    db = FakeAsyncSession()
    db.on_execute(entity_handler(LifecycleEvent, FakeResult(items=events)))
    db.on_execute(entity_handler(StaffUser, FakeResult(items=[reviewer])))

    view = await timeline.build_timeline(db, CTX, application)

    assert [entry.author for entry in view] == ["Ana Reviewer", "Ana Reviewer"]
    assert len(db.statements) == 2


@pytest.mark.asyncio
async def test_build_timeline_without_actors_skips_user_lookup():
    application = make_application()
    db = FakeAsyncSession()
    db.on_execute(entity_handler(LifecycleEvent, FakeResult(items=[_event(1, "NOTE_ADDED", {})])))

    view = await timeline.build_timeline(db, CTX, application)

    assert len(view) == 1
    assert len(db.statements) == 1
