import pytest

from permitflow.models.permit_application import PermitApplication
from permitflow.services import rejections
from permitflow.services.errors import (
    AuthorizationError,
    RejectionNotAllowed,
    StageMismatch,
    ValidationError,
)
from permitflow.services.stages import Stage
from conftest import NOW, FakeResult, make_application, select_handler


@pytest.mark.asyncio
async def test_blank_comments_refused_before_loading(fake_db) -> None:
    for comments in (None, "", "   "):
        with pytest.raises(ValidationError):
            await rejections.reject_application(
                fake_db,
                application_id=make_application().id,
                actor_role="JUNIOR_ENGINEER",
                comments=comments,
            )
    assert fake_db.statements == []


@pytest.mark.asyncio
async def test_unknown_role_refused(fake_db) -> None:
    with pytest.raises(AuthorizationError):
        await rejections.reject_application(
            fake_db,
            application_id=make_application().id,
            actor_role="PAYMENT_GATEWAY",
            comments="No",
        )


@pytest.mark.asyncio
async def test_reject_commits_returning_rejection(fake_db) -> None:
    application = make_application(stage=Stage.DOCUMENT_VERIFICATION_PENDING)
    fake_db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))

    result = await rejections.reject_application(
        fake_db,
        application_id=application.id,
        actor_role="junior_engineer",
        actor_name="R. Patil",
        comments="Upload legible ID proof",
        now=NOW,
    )

    assert result is application
    assert application.stage == int(Stage.REJECTED)
    assert application.rejection_final is False
    assert application.rejected_by == "R. Patil"
    assert fake_db.commits == 1


@pytest.mark.asyncio
async def test_reject_defaults_rejected_by_to_role(fake_db) -> None:
    application = make_application(stage=Stage.CITY_ENGINEER_PENDING)
    fake_db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))

    await rejections.reject_application(
        fake_db,
        application_id=application.id,
        actor_role="CITY_ENGINEER",
        comments="Not compliant with bylaws",
        now=NOW,
    )

    assert application.rejected_by == "CITY_ENGINEER"
    assert application.rejection_final is True


@pytest.mark.asyncio
async def test_reject_rolls_back_on_refusal(fake_db) -> None:
    application = make_application(stage=Stage.PAYMENT_PENDING)
    fake_db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))

    with pytest.raises(RejectionNotAllowed):
        await rejections.reject_application(
            fake_db,
            application_id=application.id,
            actor_role="CITY_ENGINEER",
            comments="Too late",
            now=NOW,
        )
    assert fake_db.commits == 0
    assert fake_db.rollbacks == 1
    assert application.stage == int(Stage.PAYMENT_PENDING)


@pytest.mark.asyncio
async def test_reject_with_stale_expected_stage(fake_db) -> None:
    application = make_application(stage=Stage.ASSISTANT_ENGINEER_PENDING)
    fake_db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))

    with pytest.raises(StageMismatch):
        await rejections.reject_application(
            fake_db,
            application_id=application.id,
            actor_role="JUNIOR_ENGINEER",
            comments="Rejecting from an old screen",
            expected_stage=int(Stage.DOCUMENT_VERIFICATION_PENDING),
            now=NOW,
        )


@pytest.mark.asyncio
async def test_resubmit_application(fake_db) -> None:
    application = make_application(
        stage=Stage.REJECTED,
        rejected_at_stage=int(Stage.ASSISTANT_ENGINEER_PENDING),
        rejection_comments="Fix drawings",
        rejected_by="AE",
        rejected_at=NOW,
    )
    fake_db.on_execute(select_handler(PermitApplication, FakeResult(scalar=application)))

    result = await rejections.resubmit_application(fake_db, application_id=application.id, now=NOW)

    assert result.stage == int(Stage.JUNIOR_ENGINEER_PENDING)
    assert result.chain_cycle == 2
    assert fake_db.commits == 1
