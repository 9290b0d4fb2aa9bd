"""Encoding for email-verification and password-reset tokens.

Format v1: ``base64(utf8("{user_id}:" + urlencode(opaque)))`` where ``opaque``
is produced by a :class:`~pm_identity.domain.ports.UserTokenProvider`.
"""

from __future__ import annotations

import base64
import binascii
import secrets
import uuid
from dataclasses import dataclass
from urllib.parse import quote, unquote

from itsdangerous import BadSignature, URLSafeTimedSerializer

from ..domain.account import User

PURPOSE_EMAIL_VERIFICATION = "email-verification"
PURPOSE_PASSWORD_RESET = "password-reset"


class MalformedUserToken(ValueError):
    """The outer encoding could not be decoded."""


@dataclass(slots=True, frozen=True)
class DecodedUserToken:
    user_id: str
    opaque: str


def encode_user_token(user_id: str, opaque: str) -> str:
    combined = f"{user_id}:{quote(opaque, safe='')}"
    return base64.b64encode(combined.encode("utf-8")).decode("ascii")


def decode_user_token(token: str) -> DecodedUserToken:
    try:
        decoded = base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise MalformedUserToken("token is not valid base64") from exc

    user_part, sep, opaque_part = decoded.partition(":")
    if not sep:
        raise MalformedUserToken("token is missing the user separator")
    try:
        user_id = str(uuid.UUID(user_part))
    except ValueError as exc:
        raise MalformedUserToken("token user id is not a UUID") from exc
    return DecodedUserToken(user_id=user_id, opaque=unquote(opaque_part))


def new_security_stamp() -> str:
    return secrets.token_hex(16)


class SignedUserTokenProvider:
    """Time-boxed values bound to the user's current security stamp.

    Rotating the stamp (on verification or password reset) invalidates every
    value issued before it, which is what makes each value single-use.
    """

    def __init__(self, secret: str, max_age_seconds: int) -> None:
        self._secret = secret
        self._max_age = max_age_seconds

    def _serializer(self, purpose: str) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(self._secret, salt=f"pm-identity.{purpose}")

    def generate(self, user: User, purpose: str) -> str:
        return self._serializer(purpose).dumps({"uid": user.user_id, "stamp": user.security_stamp})

    def verify(self, user: User, purpose: str, token: str) -> bool:
        try:
            data = self._serializer(purpose).loads(token, max_age=self._max_age)
        except BadSignature:
            # SignatureExpired is a BadSignature too
            return False
        if not isinstance(data, dict):
            return False
        return (
            secrets.compare_digest(str(data.get("uid", "")), user.user_id)
            and secrets.compare_digest(str(data.get("stamp", "")), user.security_stamp)
        )
