from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from conftest import (
    FakeAsyncSession,
    FakeResult,
    added_of,
    count_handler,
    entity_handler,
    make_applicant,
    make_application,
    make_document,
    make_record,
    make_staff_user,
)
from app.api import deps
from app.core.exceptions import ConcurrentModification, InvalidState, InvalidTransition, NotFound
from app.models.applicant import Applicant
from app.models.applicant_reference import ApplicantReference
from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.audit_log import AuditLog
from app.models.bank_account import BankAccount
from app.models.lifecycle_event import LifecycleEvent
from app.models.user import StaffUser
from app.models.verification_record import VerificationRecord
from app.schemas.application import (
    ApplicationStatus,
    AssignRequest,
    CounterOfferRequest,
    NoteRequest,
    StatusChangeRequest,
)
from app.schemas.contacts import BankAccountVerifyRequest, ReferenceResult, ReferenceVerifyRequest
from app.schemas.document import DocumentRejectRequest
from app.schemas.verification import FieldVerificationRequest
from app.services import lifecycle

CTX = deps.TenantContext(org_id="default")


def session_for(application: Application, *extra) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Application, FakeResult(scalar=application)))
    for handler in extra:
        db.on_execute(handler)
    return db


# -- loading ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_application_is_not_found():
    db = FakeAsyncSession()

    with pytest.raises(NotFound):
        await lifecycle.get_application(db, CTX, uuid4())


@pytest.mark.asyncio
async def test_other_tenant_application_is_not_found():
    application = make_application(org_id="other-org")

    with pytest.raises(NotFound):
        await lifecycle.get_application(session_for(application), CTX, application.id)


@pytest.mark.asyncio
async def test_detail_lists_allowed_next_statuses():
    application = make_application(status="APPROVED")

    detail = await lifecycle.get_application_detail(
        session_for(application), CTX, application.id, actor=make_staff_user(role="ANALYST")
    )

    assert detail.status == ApplicationStatus.APPROVED
    assert detail.status_label == "Approved"
    assert detail.is_final is False
    assert detail.allowed_next_statuses == [
        ApplicationStatus.SUBMITTED,
        ApplicationStatus.IN_REVIEW,
        ApplicationStatus.DOCS_PENDING,
        ApplicationStatus.CORRECTIONS_PENDING,
        ApplicationStatus.COUNTER_OFFERED,
    ]


# -- unit of work -----------------------------------------------------------


@pytest.mark.asyncio
async def test_change_status_commits():
    application = make_application(status="SUBMITTED")
    db = session_for(application)

    result = await lifecycle.change_status(
        db,
        CTX,
        application.id,
        StatusChangeRequest(status=ApplicationStatus.IN_REVIEW, version=1),
        actor=make_staff_user(),
    )

    assert result.status == "IN_REVIEW"
    assert db.committed is True
    assert db.rolled_back is False


@pytest.mark.asyncio
async def test_version_mismatch_is_conflict():
    application = make_application(status="SUBMITTED", version=4)
    db = session_for(application)

    with pytest.raises(ConcurrentModification) as exc_info:
        await lifecycle.change_status(
            db,
            CTX,
            application.id,
            StatusChangeRequest(status=ApplicationStatus.IN_REVIEW, version=3),
            actor=make_staff_user(),
        )

    assert exc_info.value.details == {"expected_version": 3, "current_version": 4}
    assert application.status == "SUBMITTED"
    assert db.committed is False
    assert db.rolled_back is True


@pytest.mark.asyncio
async def test_stale_write_at_commit_is_conflict():
    application = make_application(status="SUBMITTED")
    db = session_for(application)
    db.commit_error = StaleDataError("UPDATE statement on table 'applications' expected to update 1 row(s); 0 were matched.")

    with pytest.raises(ConcurrentModification):
        await lifecycle.change_status(
            db,
            CTX,
            application.id,
            StatusChangeRequest(status=ApplicationStatus.IN_REVIEW),
            actor=make_staff_user(),
        )

    assert db.rolled_back is True


@pytest.mark.asyncio
async def test_duplicate_event_sequence_is_conflict():
    application = make_application(status="IN_REVIEW")
    db = session_for(application)
    db.commit_error = IntegrityError("INSERT INTO application_events", {}, Exception("uq_application_events_sequence"))

    with pytest.raises(ConcurrentModification):
        await lifecycle.add_note(db, CTX, application.id, NoteRequest(content="Checked"), actor=make_staff_user())

    assert db.rolled_back is True


@pytest.mark.asyncio
async def test_domain_error_rolls_back():
    application = make_application(status="COMPLETED")
    db = session_for(application)

    with pytest.raises(InvalidTransition):
        await lifecycle.change_status(
            db,
            CTX,
            application.id,
            StatusChangeRequest(status=ApplicationStatus.IN_REVIEW),
            actor=make_staff_user(role="SUPER_ADMIN"),
        )

    assert db.rolled_back is True
    assert db.committed is False


# -- operations -------------------------------------------------------------


@pytest.mark.asyncio
async def test_counter_offer_through_service():
    application = make_application(status="IN_REVIEW")
    db = session_for(application)

    await lifecycle.make_counter_offer(
        db,
        CTX,
        application.id,
        CounterOfferRequest(amount=Decimal("35000"), term_months=18),
        actor=make_staff_user(),
    )

    assert application.status == "COUNTER_OFFERED"
    assert application.counter_offer["term_months"] == 18
    assert db.committed is True


@pytest.mark.asyncio
async def test_assign_requires_active_staff_in_tenant():
    application = make_application(status="IN_REVIEW")
    db = session_for(application, entity_handler(StaffUser, FakeResult(scalar=None)))

    with pytest.raises(NotFound):
        await lifecycle.assign_application(
            db, CTX, application.id, AssignRequest(assignee_id=uuid4()), actor=make_staff_user(role="SUPERVISOR")
        )

    assert application.assigned_to is None


@pytest.mark.asyncio
async def test_assign_sets_reviewer():
    application = make_application(status="IN_REVIEW")
    assignee = make_staff_user(full_name="Luis Analyst")
    db = session_for(application, entity_handler(StaffUser, FakeResult(scalar=assignee)))

    await lifecycle.assign_application(
        db, CTX, application.id, AssignRequest(assignee_id=assignee.id), actor=make_staff_user(role="SUPERVISOR")
    )

    assert application.assigned_to == assignee.id
    assert application.assigned_at is not None


@pytest.mark.asyncio
async def test_note_keeps_short_preview():
    application = make_application(status="IN_REVIEW")
    db = session_for(application)
    content = "Applicant confirmed employment by phone with HR department on Monday"

    await lifecycle.add_note(db, CTX, application.id, NoteRequest(content=f"  {content}  "), actor=make_staff_user())

    event = added_of(db, LifecycleEvent)[0]
    assert event.action == "NOTE_ADDED"
    assert event.payload["preview"] == content[:50]
    assert event.payload["content"] == content
    audit = added_of(db, AuditLog)[0]
    assert audit.action == "application.note_added"
    assert audit.new_value == {"length": len(content)}


def ledger_session(application: Application, applicant, *seed) -> FakeAsyncSession:
    """Application session whose ledger reads return seeded plus newly written records."""
    db = session_for(application, entity_handler(Applicant, FakeResult(scalar=applicant)))
    db.on_execute(
        entity_handler(VerificationRecord, lambda: FakeResult(items=list(seed) + added_of(db, VerificationRecord)))
    )
    return db


@pytest.mark.asyncio
async def test_verify_field_reports_status_change():
    applicant = make_applicant()
    application = make_application(applicant=applicant, status="IN_REVIEW")
    db = ledger_session(application, applicant)

    response = await lifecycle.verify_field(
        db,
        CTX,
        application.id,
        FieldVerificationRequest(field="birth_date", action="reject", rejection_reason="Does not match INE"),
        actor=make_staff_user(),
    )

    assert response.record.status.value == "REJECTED"
    assert response.current.status.value == "REJECTED"
    assert response.current.history_count == 1
    assert response.application_status == "CORRECTIONS_PENDING"
    assert response.application_status_changed is True
    assert db.committed is True


@pytest.mark.asyncio
async def test_verify_field_summary_counts_earlier_records():
    applicant = make_applicant()
    application = make_application(applicant=applicant, status="IN_REVIEW")
    db = ledger_session(
        application,
        applicant,
        make_record(applicant_id=applicant.id, field_name="rfc", status="VERIFIED", minutes=1),
        make_record(applicant_id=applicant.id, field_name="rfc", status="PENDING", minutes=2),
    )

    response = await lifecycle.verify_field(
        db,
        CTX,
        application.id,
        FieldVerificationRequest(field="rfc", action="verify"),
        actor=make_staff_user(),
    )

    assert response.current.field == "rfc"
    assert response.current.status.value == "VERIFIED"
    assert response.current.history_count == 3
    assert response.current.updated_at == response.record.created_at


@pytest.mark.asyncio
async def test_verification_state_for_application():
    applicant = make_applicant()
    application = make_application(applicant=applicant)
    db = session_for(application, entity_handler(VerificationRecord, FakeResult(items=[])))

    state = await lifecycle.get_verification_state(db, CTX, application.id)

    assert state.applicant_id == applicant.id
    assert state.summary["pending"] == state.summary["total"]


@pytest.mark.asyncio
async def test_reject_document_through_service():
    application = make_application(status="IN_REVIEW")
    document = make_document(application=application)
    db = session_for(application, entity_handler(ApplicationDocument, FakeResult(scalar=document)))

    response = await lifecycle.reject_document(
        db, CTX, application.id, document.id, DocumentRejectRequest(reason="Blurry"), actor=make_staff_user()
    )

    assert response.document.status.value == "REJECTED"
    assert response.application_status == "DOCS_PENDING"
    assert response.application_status_changed is True


@pytest.mark.asyncio
async def test_document_of_other_application_is_not_found():
    application = make_application()
    db = session_for(application, entity_handler(ApplicationDocument, FakeResult(scalar=None)))

    with pytest.raises(NotFound):
        await lifecycle.approve_document(db, CTX, application.id, uuid4(), actor=make_staff_user())

    assert db.rolled_back is True


@pytest.mark.asyncio
async def test_kyc_result_locks_document_and_records_checks():
    applicant = make_applicant()
    application = make_application(applicant=applicant, status="IN_REVIEW")
    document = make_document(application=application, document_type="SELFIE", file_name="selfie.jpg")
    db = session_for(
        application,
        entity_handler(ApplicationDocument, FakeResult(scalar=document)),
        entity_handler(Applicant, FakeResult(scalar=applicant)),
    )

    result = await lifecycle.ingest_kyc_result(
        db,
        CTX,
        application.id,
        document.id,
        metadata={"face_match_passed": True, "face_match_score": 96},
    )

    assert result.kyc_locked is True
    assert result.provenance["method"] == "KYC_FACE_MATCH"
    records = added_of(db, VerificationRecord)
    assert {record.field_name for record in records} == {"selfie_document", "face_match"}
    assert all(record.is_locked and record.method == "KYC_FACE_MATCH" for record in records)
    assert db.committed is True


@pytest.mark.asyncio
async def test_kyc_result_without_validation_records_nothing():
    applicant = make_applicant()
    application = make_application(applicant=applicant)
    document = make_document(application=application, document_type="INE_FRONT")
    db = session_for(
        application,
        entity_handler(ApplicationDocument, FakeResult(scalar=document)),
        entity_handler(Applicant, FakeResult(scalar=applicant)),
    )

    result = await lifecycle.ingest_kyc_result(db, CTX, application.id, document.id, metadata={"pages": 1})

    assert result.kyc_locked is False
    assert result.doc_metadata == {"pages": 1}
    assert added_of(db, VerificationRecord) == []


@pytest.mark.asyncio
async def test_document_access_link_expires():
    application = make_application()
    document = make_document(application=application)
    db = session_for(application, entity_handler(ApplicationDocument, FakeResult(scalar=document)))

    access = await lifecycle.get_document_access(db, CTX, application.id, document.id)

    assert "signature=" in access.url
    assert access.expires_at.tzinfo is not None


@pytest.mark.asyncio
async def test_verify_reference_maps_result_to_status():
    applicant = make_applicant()
    application = make_application(applicant=applicant)
    reference = ApplicantReference(
        id=uuid4(),
        org_id="default",
        applicant_id=applicant.id,
        full_name="Juan Perez",
        phone="+525511112222",
        relation_type="SIBLING",
        verification_status="PENDING",
        verification_result=None,
    )
    db = session_for(application, entity_handler(ApplicantReference, FakeResult(scalar=reference)))

    dto = await lifecycle.verify_reference(
        db,
        CTX,
        application.id,
        reference.id,
        ReferenceVerifyRequest(result=ReferenceResult.NO_ANSWER, notes="Voicemail"),
        actor=make_staff_user(),
    )

    assert dto.verification_status.value == "UNREACHABLE"
    assert dto.verification_result == ReferenceResult.NO_ANSWER
    event = added_of(db, LifecycleEvent)[0]
    assert event.action == "REF_VERIFIED"
    assert event.payload["reference_name"] == "Juan Perez"


def _bank_account(applicant_id, *, is_verified: bool) -> BankAccount:
    return BankAccount(
        id=uuid4(),
        org_id="default",
        applicant_id=applicant_id,
        bank_name="BBVA",
        account_holder="Maria Lopez",
        clabe="012180001234567891",
        clabe_last4="7891",
        is_primary=True,
        is_verified=is_verified,
        verification_method=None,
        verified_at=None,
        verified_by=None,
        unverified_at=None,
    )


@pytest.mark.asyncio
async def test_bank_account_verify_and_unverify():
    application = make_application()
    account = _bank_account(application.applicant_id, is_verified=False)
    db = session_for(application, entity_handler(BankAccount, FakeResult(scalar=account)))
    analyst = make_staff_user()

    verified = await lifecycle.verify_bank_account(
        db, CTX, application.id, account.id, BankAccountVerifyRequest(method="PENNY_DROP"), actor=analyst
    )
    assert verified.is_verified is True
    assert verified.clabe_masked == "****7891"

    with pytest.raises(InvalidState):
        await lifecycle.verify_bank_account(
            db, CTX, application.id, account.id, BankAccountVerifyRequest(), actor=analyst
        )

    unverified = await lifecycle.unverify_bank_account(db, CTX, application.id, account.id, actor=analyst)
    assert unverified.is_verified is False
    assert unverified.unverified_at is not None
    actions = [event.action for event in added_of(db, LifecycleEvent)]
    assert actions == ["BANK_ACCOUNT_VERIFIED", "BANK_ACCOUNT_UNVERIFIED"]
    assert added_of(db, LifecycleEvent)[0].payload["account_masked"] == "****7891"


@pytest.mark.asyncio
async def test_audit_listing_scoped_to_application():
    application = make_application()
    entry = AuditLog(
        id=uuid4(),
        org_id="default",
        actor_id=None,
        action="application.status_changed",
        resource_type="application",
        resource_id=str(application.id),
    )
    db = session_for(application, entity_handler(AuditLog, FakeResult(items=[entry])), count_handler(12))

    rows, total = await lifecycle.list_audit_logs(db, CTX, application.id, limit=10)

    assert rows == [entry]
    assert total == 12
    compiled = str(db.statements[-1].compile(compile_kwargs={"literal_binds": True}))
    assert "audit_logs.resource_type = 'application'" in compiled
