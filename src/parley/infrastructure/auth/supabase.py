"""Supabase authentication provider implementation."""

from jose import JWTError, jwt

from parley.config import get_settings
from parley.infrastructure.auth.provider import AuthProvider, AuthUser
from parley.shared.exceptions import TokenExpiredError, TokenInvalidError
from parley.shared.logging import get_logger

logger = get_logger(__name__)


class SupabaseAuthProvider(AuthProvider):
    """Verifies Supabase access tokens locally with the project's JWT secret."""

    def __init__(self, jwt_secret: str | None = None) -> None:
        self.jwt_secret = jwt_secret if jwt_secret is not None else get_settings().supabase_jwt_secret

    async def verify_token(self, token: str) -> AuthUser:
        """Verify Supabase JWT and extract user info."""
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Token has expired") from e
        except JWTError as e:
            logger.warning("jwt_decode_failed", error=str(e))
            raise TokenInvalidError("Token is invalid") from e

        user_id = payload.get("sub")
        if not user_id:
            raise TokenInvalidError("Token carries no user id")

        user_metadata = payload.get("user_metadata") or {}
        return AuthUser(
            id=user_id,
            email=payload.get("email"),
            email_verified=payload.get("email_confirmed_at") is not None,
            full_name=user_metadata.get("full_name"),
        )
