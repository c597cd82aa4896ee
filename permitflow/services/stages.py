"""Stage codes, labels and the role-to-stage ownership table.

Stage codes are part of the external contract: they are stable integers and
their ordering is meaningful (``stage < Stage.PAYMENT_PENDING`` means the
application is still in technical review).
"""

from __future__ import annotations

from enum import Enum, IntEnum


class Stage(IntEnum):
    JUNIOR_ENGINEER_PENDING = 0
    DOCUMENT_VERIFICATION_PENDING = 1
    ASSISTANT_ENGINEER_PENDING = 2
    EXECUTIVE_ENGINEER_PENDING = 3
    CITY_ENGINEER_PENDING = 4
    PAYMENT_PENDING = 5
    CLERK_PENDING = 6
    EXECUTIVE_ENGINEER_SIGN_PENDING = 7
    CITY_ENGINEER_SIGN_PENDING = 8
    APPROVED = 9
    REJECTED = 10


class OfficerRole(str, Enum):
    JUNIOR_ENGINEER = "JUNIOR_ENGINEER"
    ASSISTANT_ENGINEER = "ASSISTANT_ENGINEER"
    EXECUTIVE_ENGINEER = "EXECUTIVE_ENGINEER"
    CITY_ENGINEER = "CITY_ENGINEER"
    CLERK = "CLERK"
    PAYMENT_GATEWAY = "PAYMENT_GATEWAY"


class PositionType(str, Enum):
    ARCHITECT = "ARCHITECT"
    LICENCE_ENGINEER = "LICENCE_ENGINEER"
    STRUCTURAL_ENGINEER = "STRUCTURAL_ENGINEER"
    SUPERVISOR1 = "SUPERVISOR1"
    SUPERVISOR2 = "SUPERVISOR2"


STAGE_LABELS: dict[Stage, str] = {
    Stage.JUNIOR_ENGINEER_PENDING: "Pending Junior Engineer review",
    Stage.DOCUMENT_VERIFICATION_PENDING: "Pending document verification",
    Stage.ASSISTANT_ENGINEER_PENDING: "Pending Assistant Engineer review",
    Stage.EXECUTIVE_ENGINEER_PENDING: "Pending Executive Engineer review",
    Stage.CITY_ENGINEER_PENDING: "Pending City Engineer approval",
    Stage.PAYMENT_PENDING: "Pending fee payment",
    Stage.CLERK_PENDING: "Pending Clerk processing",
    Stage.EXECUTIVE_ENGINEER_SIGN_PENDING: "Pending Executive Engineer digital signature",
    Stage.CITY_ENGINEER_SIGN_PENDING: "Pending City Engineer digital signature",
    Stage.APPROVED: "Approved, certificate issued",
    Stage.REJECTED: "Rejected",
}


ROLE_STAGES: dict[OfficerRole, frozenset[Stage]] = {
    OfficerRole.JUNIOR_ENGINEER: frozenset(
        {Stage.JUNIOR_ENGINEER_PENDING, Stage.DOCUMENT_VERIFICATION_PENDING}
    ),
    OfficerRole.ASSISTANT_ENGINEER: frozenset({Stage.ASSISTANT_ENGINEER_PENDING}),
    OfficerRole.EXECUTIVE_ENGINEER: frozenset(
        {Stage.EXECUTIVE_ENGINEER_PENDING, Stage.EXECUTIVE_ENGINEER_SIGN_PENDING}
    ),
    OfficerRole.CITY_ENGINEER: frozenset(
        {Stage.CITY_ENGINEER_PENDING, Stage.CITY_ENGINEER_SIGN_PENDING}
    ),
    OfficerRole.CLERK: frozenset({Stage.CLERK_PENDING}),
    OfficerRole.PAYMENT_GATEWAY: frozenset({Stage.PAYMENT_PENDING}),
}

STAGE_OWNERS: dict[Stage, OfficerRole] = {
    stage: role for role, stages in ROLE_STAGES.items() for stage in stages
}

# Stages from which an officer may hand the application back (or, at the
# City Engineer gate, close it for good).
REJECTABLE_STAGES: frozenset[Stage] = frozenset(
    {
        Stage.JUNIOR_ENGINEER_PENDING,
        Stage.DOCUMENT_VERIFICATION_PENDING,
        Stage.ASSISTANT_ENGINEER_PENDING,
        Stage.EXECUTIVE_ENGINEER_PENDING,
        Stage.CITY_ENGINEER_PENDING,
        Stage.CLERK_PENDING,
    }
)
FINAL_REJECTION_STAGES: frozenset[Stage] = frozenset({Stage.CITY_ENGINEER_PENDING})

SIGNATURE_PURPOSE_PREFIX = "signature:"
DOWNLOAD_PURPOSE = "download-access"


def stage_label(stage: int) -> str:
    return STAGE_LABELS[Stage(stage)]


def owner_of(stage: int) -> OfficerRole | None:
    return STAGE_OWNERS.get(Stage(stage))


def role_owns(role: OfficerRole, stage: int) -> bool:
    return Stage(stage) in ROLE_STAGES.get(role, frozenset())


def owned_previous_stage(role: OfficerRole, stage: int) -> bool:
    """True when ``role`` owned the stage the application has just left."""
    current = Stage(stage)
    if current in (Stage.JUNIOR_ENGINEER_PENDING, Stage.REJECTED):
        return False
    return role_owns(role, current - 1)


def next_stage(stage: int) -> Stage:
    current = Stage(stage)
    if current >= Stage.APPROVED:
        raise ValueError(f"{current.name} has no successor")
    return Stage(current + 1)


def signature_purpose(role: OfficerRole) -> str:
    return f"{SIGNATURE_PURPOSE_PREFIX}{OfficerRole(role).value}"


def parse_role(value: str) -> OfficerRole | None:
    try:
        return OfficerRole(value.strip().upper())
    except (AttributeError, ValueError):
        return None
