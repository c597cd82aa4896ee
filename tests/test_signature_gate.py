import asyncio

import pytest

from permitflow.models.application_document import ApplicationDocument
from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.otp_challenge import OtpChallenge
from permitflow.models.permit_application import PermitApplication
from permitflow.services import certificates, otp, signature_gate
from permitflow.services.errors import (
    AuthorizationError,
    InvalidOrExpiredOtp,
    StageMismatch,
    TerminalStateViolation,
    ValidationError,
    WorkflowError,
)
from permitflow.services.stages import OfficerRole, Stage, signature_purpose
from conftest import (
    NOW,
    FakeAsyncSession,
    FakeResult,
    live_challenge_handler,
    make_application,
    make_challenge,
    select_handler,
    update_handler,
)


def _session_for(db: FakeAsyncSession, application, challenges=()) -> FakeAsyncSession:
    db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))
    db.on_execute(live_challenge_handler(list(challenges)))
    return db


@pytest.fixture
def no_documents(monkeypatch):
    async def _skip(*args, **kwargs):
        return None

    monkeypatch.setattr(certificates, "issue_documents", _skip)


def test_resolve_officer_role() -> None:
    assert signature_gate.resolve_officer_role("clerk") == OfficerRole.CLERK
    for value in ("PAYMENT_GATEWAY", "applicant", ""):
        with pytest.raises(AuthorizationError):
            signature_gate.resolve_officer_role(value)


@pytest.mark.asyncio
async def test_generate_signing_otp_for_stage_owner(fake_db, notifier) -> None:
    application = make_application(stage=Stage.EXECUTIVE_ENGINEER_PENDING)
    _session_for(fake_db, application)

    issued = await signature_gate.generate_signing_otp(
        fake_db,
        application_id=application.id,
        actor_role="EXECUTIVE_ENGINEER",
        notifier=notifier,
    )

    challenge = fake_db.added_of(OtpChallenge)[0]
    assert challenge.purpose == "signature:EXECUTIVE_ENGINEER"
    assert challenge.stage == int(Stage.EXECUTIVE_ENGINEER_PENDING)
    assert issued.reference == challenge.reference
    assert notifier.sent[0].recipient == "EXECUTIVE_ENGINEER"


@pytest.mark.asyncio
async def test_generate_signing_otp_refuses_non_owner(fake_db, notifier) -> None:
    application = make_application(stage=Stage.EXECUTIVE_ENGINEER_PENDING)
    _session_for(fake_db, application)

    with pytest.raises(AuthorizationError):
        await signature_gate.generate_signing_otp(
            fake_db,
            application_id=application.id,
            actor_role="CITY_ENGINEER",
            notifier=notifier,
        )
    assert notifier.sent == []
    assert fake_db.rollbacks == 1


@pytest.mark.asyncio
async def test_generate_signing_otp_refuses_terminal(fake_db, notifier) -> None:
    application = make_application(stage=Stage.APPROVED)
    _session_for(fake_db, application)

    with pytest.raises(TerminalStateViolation):
        await signature_gate.generate_signing_otp(
            fake_db,
            application_id=application.id,
            actor_role="CITY_ENGINEER",
            notifier=notifier,
        )


@pytest.mark.asyncio
async def test_verify_and_sign_advances_and_commits(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.ASSISTANT_ENGINEER_PENDING)
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.ASSISTANT_ENGINEER),
        stage=Stage.ASSISTANT_ENGINEER_PENDING,
    )
    _session_for(fake_db, application, [challenge])

    transition = await signature_gate.verify_and_sign(
        fake_db,
        application_id=application.id,
        actor_role="ASSISTANT_ENGINEER",
        actor_name="M. Deshmukh",
        otp_code=otp.derive_code(challenge.secret),
        comments="Recommended",
        now=NOW,
    )

    assert transition.to_stage == Stage.EXECUTIVE_ENGINEER_PENDING
    assert application.stage == int(Stage.EXECUTIVE_ENGINEER_PENDING)
    assert challenge.consumed_at == NOW
    assert fake_db.commits == 1
    assert fake_db.rollbacks == 0
    assert signature_gate.success_message(transition) == (
        "Digital signature applied successfully. "
        "Application forwarded: Pending Executive Engineer review."
    )


@pytest.mark.asyncio
async def test_verify_and_sign_wrong_code_leaves_stage(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.ASSISTANT_ENGINEER_PENDING)
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.ASSISTANT_ENGINEER),
        stage=Stage.ASSISTANT_ENGINEER_PENDING,
    )
    _session_for(fake_db, application, [challenge])
    right = otp.derive_code(challenge.secret)

    with pytest.raises(InvalidOrExpiredOtp):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=application.id,
            actor_role="ASSISTANT_ENGINEER",
            actor_name="M. Deshmukh",
            otp_code="000000" if right != "000000" else "111111",
            now=NOW,
        )
    assert application.stage == int(Stage.ASSISTANT_ENGINEER_PENDING)
    assert challenge.failed_attempts == 1
    assert fake_db.added_of(ApprovalEntry) == []


@pytest.mark.asyncio
async def test_verify_and_sign_without_challenge(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.CLERK_PENDING)
    _session_for(fake_db, application)

    with pytest.raises(InvalidOrExpiredOtp):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=application.id,
            actor_role="CLERK",
            actor_name="Clerk",
            otp_code="123456",
            now=NOW,
        )
    assert fake_db.rollbacks == 1


@pytest.mark.asyncio
async def test_verify_and_sign_stale_challenge_is_stage_mismatch(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.EXECUTIVE_ENGINEER_SIGN_PENDING)
    # issued while the application waited for the first Executive Engineer review
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.EXECUTIVE_ENGINEER),
        stage=Stage.EXECUTIVE_ENGINEER_PENDING,
    )
    _session_for(fake_db, application, [challenge])

    with pytest.raises(StageMismatch):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=application.id,
            actor_role="EXECUTIVE_ENGINEER",
            actor_name="S. Rao",
            otp_code=otp.derive_code(challenge.secret),
            now=NOW,
        )
    assert challenge.consumed_at is None
    assert application.stage == int(Stage.EXECUTIVE_ENGINEER_SIGN_PENDING)


@pytest.mark.asyncio
async def test_verify_and_sign_non_owner_is_unauthorized(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.CITY_ENGINEER_SIGN_PENDING)
    _session_for(fake_db, application)

    with pytest.raises(AuthorizationError):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=application.id,
            actor_role="CLERK",
            actor_name="M. Desai",
            otp_code="123456",
            now=NOW,
        )


@pytest.mark.asyncio
async def test_replayed_code_after_signing_is_invalid(fake_db, no_documents) -> None:
    application = make_application(stage=Stage.EXECUTIVE_ENGINEER_PENDING)
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.EXECUTIVE_ENGINEER),
        stage=Stage.EXECUTIVE_ENGINEER_PENDING,
    )
    _session_for(fake_db, application, [challenge])
    request = dict(
        application_id=application.id,
        actor_role="EXECUTIVE_ENGINEER",
        actor_name="S. Rao",
        otp_code=otp.derive_code(challenge.secret),
        now=NOW,
    )

    await signature_gate.verify_and_sign(fake_db, **request)
    with pytest.raises(InvalidOrExpiredOtp) as excinfo:
        await signature_gate.verify_and_sign(fake_db, **request)

    assert excinfo.value.details == {"current_stage": int(Stage.CITY_ENGINEER_PENDING)}
    assert application.stage == int(Stage.CITY_ENGINEER_PENDING)
    assert len(fake_db.added_of(ApprovalEntry)) == 1


@pytest.mark.asyncio
async def test_verify_and_sign_validates_input_before_loading(fake_db) -> None:
    with pytest.raises(ValidationError):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=make_application().id,
            actor_role="CLERK",
            actor_name="Clerk",
            otp_code="12ab56",
        )
    with pytest.raises(ValidationError):
        await signature_gate.verify_and_sign(
            fake_db,
            application_id=make_application().id,
            actor_role="CLERK",
            actor_name="   ",
            otp_code="123456",
        )
    assert fake_db.statements == []


@pytest.mark.asyncio
async def test_final_signature_issues_certificate(fake_db, storage) -> None:
    application = make_application(stage=Stage.CITY_ENGINEER_SIGN_PENDING, ee2_signed_at=NOW)
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.CITY_ENGINEER),
        stage=Stage.CITY_ENGINEER_SIGN_PENDING,
    )
    _session_for(fake_db, application, [challenge])

    transition = await signature_gate.verify_and_sign(
        fake_db,
        application_id=application.id,
        actor_role="CITY_ENGINEER",
        actor_name="A. Joshi",
        otp_code=otp.derive_code(challenge.secret),
        now=NOW,
        adapter=storage,
    )

    assert transition.to_stage == Stage.APPROVED
    assert application.ce2_signed_at == NOW
    assert application.certificate_issued_at == NOW
    document = fake_db.added_of(ApplicationDocument)[0]
    assert document.kind == "certificate"
    assert document.file_name == "ARC2026030001_certificate.pdf"
    assert storage.objects[document.storage_key].startswith(b"%PDF")
    assert signature_gate.success_message(transition).endswith("Certificate issued.")


class YieldingSession(FakeAsyncSession):
    """Yields to the event loop on every statement so two requests interleave."""

    async def execute(self, stmt, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().execute(stmt, *args, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize("expected_stage", [int(Stage.EXECUTIVE_ENGINEER_SIGN_PENDING), None])
async def test_double_submit_signs_once(no_documents, expected_stage) -> None:
    application = make_application(stage=Stage.EXECUTIVE_ENGINEER_SIGN_PENDING)
    challenge = make_challenge(
        application,
        purpose=signature_purpose(OfficerRole.EXECUTIVE_ENGINEER),
        stage=Stage.EXECUTIVE_ENGINEER_SIGN_PENDING,
    )
    claimed = []

    def _compare_and_set(_stmt):
        claimed.append(True)
        return FakeResult(rowcount=1 if len(claimed) == 1 else 0)

    db = YieldingSession()
    db.on_execute(update_handler("otp_challenges", _compare_and_set, sets="consumed_at"))
    _session_for(db, application, [challenge])
    code = otp.derive_code(challenge.secret)

    async def _sign():
        return await signature_gate.verify_and_sign(
            db,
            application_id=application.id,
            actor_role="EXECUTIVE_ENGINEER",
            actor_name="S. Rao",
            otp_code=code,
            expected_stage=expected_stage,
            now=NOW,
        )

    results = await asyncio.gather(_sign(), _sign(), return_exceptions=True)

    successes = [result for result in results if not isinstance(result, BaseException)]
    failures = [result for result in results if isinstance(result, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InvalidOrExpiredOtp, StageMismatch))
    assert isinstance(failures[0], WorkflowError)
    assert application.stage == int(Stage.CITY_ENGINEER_SIGN_PENDING)
    assert len(db.added_of(ApprovalEntry)) == 1
