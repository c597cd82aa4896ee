from __future__ import annotations

import hashlib
import hmac
from datetime import datetime

from permitflow.core.settings import settings


def _signing_payload(
    application_number: str,
    stage: int,
    actor_role: str,
    actor_name: str,
    signed_at: datetime,
) -> bytes:
    return "|".join(
        [application_number, str(stage), actor_role, actor_name, signed_at.isoformat()]
    ).encode("utf-8")


def sign_stage(
    application_number: str,
    stage: int,
    actor_role: str,
    actor_name: str,
    signed_at: datetime,
) -> str:
    """Return the signature digest recorded on an approval entry.

    Stands in for the HSM-backed signing service; the digest binds the
    application, stage, officer and timestamp.
    """
    payload = _signing_payload(application_number, stage, actor_role, actor_name, signed_at)
    return hmac.new(settings.secret_key.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_stage_signature(
    digest: str,
    application_number: str,
    stage: int,
    actor_role: str,
    actor_name: str,
    signed_at: datetime,
) -> bool:
    expected = sign_stage(application_number, stage, actor_role, actor_name, signed_at)
    return hmac.compare_digest(expected, digest)
