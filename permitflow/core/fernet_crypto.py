from __future__ import annotations

import base64
from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from permitflow.core.settings import settings


_DEFAULT_DEV_KDF_SALT = "permitflow-fernet-dev-salt-v1"


def _effective_kdf_salt(secret: str) -> bytes:
    configured = (settings.fernet_kdf_salt or "").strip()
    if configured:
        return configured.encode("utf-8")
    # Development fallback only; deployments set FERNET_KDF_SALT.
    fallback = f"{_DEFAULT_DEV_KDF_SALT}:{secret[:16]}"
    return fallback.encode("utf-8")


def _derive_pbkdf2_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_effective_kdf_salt(secret),
        iterations=max(100_000, settings.fernet_kdf_iterations),
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


@lru_cache(maxsize=16)
def _fernet_for_secret(secret: str) -> Fernet:
    return Fernet(_derive_pbkdf2_key(secret))


def get_fernet(*, secret: str | None = None) -> Fernet:
    return _fernet_for_secret(secret or settings.secret_key)


def encrypt_text(value: str, *, secret: str | None = None) -> bytes:
    return get_fernet(secret=secret).encrypt(value.encode("utf-8"))


def decrypt_text(token: bytes, *, secret: str | None = None) -> str:
    return get_fernet(secret=secret).decrypt(token).decode("utf-8")
