from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from slipsafe.core.config import settings
from slipsafe.core.errors import InvalidToken

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
CLAIM_TOKEN_TYPE = "claim"
PREVIEW_TOKEN_TYPE = "receipt_preview"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


# PINs share the password hasher; only the issuance response carries plaintext.
hash_pin = hash_password
verify_pin = verify_password


class TokenSigner:
    """Signs and verifies compact bearer credentials.

    The ``typ`` claim keeps access, claim and preview tokens from being
    interchangeable even though they share a key.
    """

    def __init__(self, secret_key: str, *, algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def sign(self, payload: dict[str, Any], *, token_type: str, expires_at: datetime) -> str:
        claims = dict(payload)
        claims["typ"] = token_type
        claims["exp"] = expires_at
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str, *, token_type: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as e:
            raise InvalidToken() from e
        if payload.get("typ") != token_type:
            raise InvalidToken("Token is not valid for this purpose")
        return payload


_signer: TokenSigner | None = None


def get_token_signer() -> TokenSigner:
    global _signer  # noqa: PLW0603
    if _signer is None:
        _signer = TokenSigner(settings.secret_key)
    return _signer


def create_access_token(*, subject: str, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or settings.access_token_exp_minutes
    expire = datetime.now(UTC) + timedelta(minutes=expire_minutes)
    return get_token_signer().sign(
        {"sub": subject}, token_type=ACCESS_TOKEN_TYPE, expires_at=expire
    )


def decode_access_token(token: str) -> str | None:
    try:
        payload = get_token_signer().verify(token, token_type=ACCESS_TOKEN_TYPE)
    except InvalidToken:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
