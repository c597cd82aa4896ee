import json
import logging

import pytest

from permitflow.core.context import clear_context, set_actor, set_request_id
from permitflow.core.fernet_crypto import decrypt_text, encrypt_text
from permitflow.core.logging import JsonFormatter, RequestContextFilter
from permitflow.db.url import normalize_database_url
from permitflow.models.types import EncryptedString


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("postgres://u:p@db/permits", "postgresql+asyncpg://u:p@db/permits"),
        ("postgresql://u:p@db/permits?sslmode=require", "postgresql+asyncpg://u:p@db/permits?ssl=require"),
        ("postgresql://u:p@db/permits?ssl=false", "postgresql+asyncpg://u:p@db/permits?ssl=disable"),
        ("postgresql+asyncpg://u:p@db/permits", "postgresql+asyncpg://u:p@db/permits"),
        ("", ""),
    ],
)
def test_normalize_database_url(raw, expected) -> None:
    assert normalize_database_url(raw) == expected


def test_fernet_round_trip_and_secret_isolation() -> None:
    token = encrypt_text("JBSWY3DPEHPK3PXP", secret="first-secret-value")

    assert token != b"JBSWY3DPEHPK3PXP"
    assert decrypt_text(token, secret="first-secret-value") == "JBSWY3DPEHPK3PXP"
    with pytest.raises(Exception):
        decrypt_text(token, secret="second-secret-value")


def test_encrypted_string_column() -> None:
    column_type = EncryptedString(secret="column-secret")

    stored = column_type.process_bind_param("JBSWY3DPEHPK3PXP", None)

    assert isinstance(stored, bytes)
    assert column_type.process_result_value(stored, None) == "JBSWY3DPEHPK3PXP"
    assert column_type.process_bind_param(None, None) is None


def test_json_formatter_carries_request_context() -> None:
    set_request_id("req-123")
    set_actor("CLERK")
    try:
        record = logging.LogRecord("permitflow.test", logging.INFO, __file__, 1, "signed %s", ("ok",), None)
        record.application_id = "app-1"
        record.stage = 6
        RequestContextFilter().filter(record)

        payload = json.loads(JsonFormatter("audit").format(record))
    finally:
        clear_context()

    assert payload["message"] == "signed ok"
    assert payload["stream"] == "audit"
    assert payload["request_id"] == "req-123"
    assert payload["actor"] == "CLERK"
    assert payload["application_id"] == "app-1"
    assert payload["stage"] == 6
    assert "purpose" not in payload
