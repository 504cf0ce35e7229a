"""Bearer token verification for identities issued by the sign-in provider."""

from typing import Any, Dict

from jose import jwt, JWTError

from galleria.settings import settings


def decode_identity_token(token: str) -> Dict[str, Any]:
    """Verify a bearer token and return its claims.

    Verification checks the HMAC signature against ``auth_jwt_secret``, the
    ``exp`` claim, and the ``aud`` claim when an audience is configured.

    Raises:
        JWTError: If the token is malformed, expired, or fails verification,
            or if no signing secret is configured.
    """
    if not settings.auth_jwt_secret:
        raise JWTError("Token verification is not configured")

    audience = settings.auth_jwt_audience or None
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=audience,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": audience is not None,
            },
        )
    except JWTError as e:
        raise JWTError(f"JWT verification failed: {str(e)}")


def identity_from_claims(claims: Dict[str, Any]) -> Dict[str, str]:
    """Pick the identity fields used by the gallery out of decoded claims."""
    email = str(claims.get("email") or "").strip().lower()
    name = str(claims.get("name") or "").strip()
    username = str(claims.get("preferred_username") or claims.get("username") or "").strip()
    return {"email": email, "name": name, "username": username}
