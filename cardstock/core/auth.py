"""Resolve the acting principal from identity-provider access tokens."""

from __future__ import annotations

import os
import uuid
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

from cardstock.core.principal import Principal

__all__ = [
    "PrincipalTokenPayload",
    "TokenConfigurationError",
    "TokenValidationError",
    "decode_principal_token",
    "get_principal_from_request",
]


class TokenConfigurationError(RuntimeError):
    """Raised when access token configuration is invalid."""


class TokenValidationError(ValueError):
    """Raised when the provided access token cannot be validated."""


class _RequiredClaims(TypedDict):
    sub: str
    email: str


class PrincipalTokenPayload(_RequiredClaims, total=False):
    """Decoded JWT payload issued by the identity provider."""

    aud: str | list[str]
    exp: int
    iat: int
    iss: str
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    """Fetch an environment variable with optional requirement enforcement.

    Raises:
        TokenConfigurationError: If ``required`` is ``True`` and the variable
            is missing or blank.
    """

    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise TokenConfigurationError(
            f"Environment variable '{name}' must be set for access token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_principal_token(token: str) -> Principal:
    """Decode and validate an access token into a :class:`Principal`.

    Args:
        token: Encoded JWT from the ``Authorization`` header.

    Raises:
        TokenConfigurationError: If mandatory environment configuration is missing.
        TokenValidationError: If signature, claims or expiry are invalid.
    """

    secret_key = _get_env("AUTH_TOKEN_SECRET")
    audience = _get_env("AUTH_TOKEN_AUDIENCE")
    issuer = _get_env("AUTH_TOKEN_ISSUER")
    algorithm = _get_env("AUTH_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss", "sub"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Access token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Access token is invalid.") from exc

    claims = cast(PrincipalTokenPayload, payload)
    type_claim = claims.get("type")
    if type_claim and type_claim != "access":
        raise TokenValidationError("Token must be an access token.")

    email = claims.get("email")
    if not email or not isinstance(email, str):
        raise TokenValidationError("Access token payload must include 'email'.")
    try:
        principal_id = uuid.UUID(claims["sub"])
    except (KeyError, ValueError) as exc:
        raise TokenValidationError("Access token subject must be a UUID.") from exc

    return Principal(id=principal_id, email=email.strip())


async def get_principal_from_request(request: Request) -> Principal:
    """Extract the principal from the ``Authorization`` bearer token.

    Raises:
        HTTPException: ``401`` when the header is missing or the token invalid,
            ``500`` if token validation is misconfigured.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_principal_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
