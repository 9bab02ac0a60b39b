"""Admin JWT creation and validation.

Admin endpoints accept an HS256 JWT from either an ``Authorization: Bearer``
header or the admin cookie. The token must carry the standard claims
(sub, aud, iss, exp, iat) plus ``adm: true``.

An empty AUTH_SECRET disables admin access entirely (fail closed).
"""

import logging
from datetime import UTC, datetime, timedelta

import jwt

from review_verification.core.config import settings
from review_verification.core.errors import AdminRequiredError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN_AUDIENCE = "portfolio-reviews-admin"

# Default JWT expiration: 1 hour
_DEFAULT_EXPIRATION = timedelta(hours=1)

# Longest accepted subject (email-sized)
_MAX_SUBJECT_LENGTH = 254


def create_admin_jwt(
    *,
    subject: str,
    secret: str,
    expires_delta: timedelta | None = None,
    admin: bool = True,
) -> str:
    """Create a signed admin JWT.

    Args:
        subject: Admin identity for the sub claim.
        secret: HMAC signing secret.
        expires_delta: Time until expiration. Defaults to 1 hour.
        admin: Value of the adm claim.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "aud": ADMIN_AUDIENCE,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or _DEFAULT_EXPIRATION),
        "iat": now,
        "adm": admin,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_admin_jwt(token: str) -> str:
    """Validate an admin JWT and return its subject.

    Security: failure messages never say WHY a token was rejected.

    Raises:
        UnauthorizedError: Missing secret, bad signature, expired, wrong
            audience/issuer, or missing claims.
        AdminRequiredError: Valid token without the adm claim.
    """
    secret = settings.auth_secret.get_secret_value()
    if not secret:
        logger.warning("Admin request rejected: AUTH_SECRET is not configured")
        raise UnauthorizedError()

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=ADMIN_AUDIENCE,
            issuer=settings.auth_issuer,
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError() from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not 0 < len(subject) <= _MAX_SUBJECT_LENGTH:
        raise UnauthorizedError()

    if payload.get("adm") is not True:
        raise AdminRequiredError()

    return subject
