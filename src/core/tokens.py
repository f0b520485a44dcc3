from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError

SUBJECT_CLAIMS = ("sub", "preferred_username", "user_id", "uid", "id", "email", "username")
EMAIL_CLAIMS = ("email", "upn")
NAME_CLAIMS = ("name", "given_name", "display_name")


class InvalidIdentityTokenError(Exception):
    """The bearer token could not be decoded, failed validation or names no subject."""


@dataclass(frozen=True, slots=True)
class IdentityClaims:
    user_id: str
    email: str | None = None
    name: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


def _first_claim(claims: Mapping[str, Any], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = claims.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def claims_from_mapping(claims: Mapping[str, Any]) -> IdentityClaims:
    """Resolves subject, email and display name from decoded claims.

    Raises:
        InvalidIdentityTokenError: If none of the subject claims is present.
    """
    user_id = _first_claim(claims, SUBJECT_CLAIMS)
    if user_id is None:
        raise InvalidIdentityTokenError("Token does not identify a user")
    return IdentityClaims(
        user_id=user_id,
        email=_first_claim(claims, EMAIL_CLAIMS),
        name=_first_claim(claims, NAME_CLAIMS),
        raw=dict(claims),
    )


class IdentityTokenParser:
    """Decodes bearer tokens issued by the identity provider."""

    def __init__(self, key: str | bytes, algorithms: list[str] | None = None) -> None:
        self._key = key
        self._jwt = JsonWebToken(algorithms or ["HS256"])

    def parse(self, token: str) -> IdentityClaims:
        """Verifies the signature and time claims of ``token``.

        Raises:
            InvalidIdentityTokenError: On any decoding or validation failure.
        """
        if not token or not token.strip():
            raise InvalidIdentityTokenError("Empty token")
        try:
            claims = self._jwt.decode(token.strip(), self._key)
            claims.validate()
        except (JoseError, ValueError) as e:
            raise InvalidIdentityTokenError(f"Token rejected: {type(e).__name__}") from e
        return claims_from_mapping(claims)
