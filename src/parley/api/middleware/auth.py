"""Authentication dependencies for FastAPI."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from parley.config import Settings, get_settings
from parley.infrastructure.auth.provider import AuthProvider, AuthUser
from parley.shared.exceptions import AuthenticationError, TokenExpiredError, TokenInvalidError
from parley.shared.logging import bind_chat_context, get_logger

logger = get_logger(__name__)

# HTTP Bearer scheme
security = HTTPBearer(auto_error=False)


def build_auth_provider(settings: Settings) -> AuthProvider:
    """Build the configured auth provider.

    Set AUTH_PROVIDER env var to "dev" for local testing without Supabase.
    """
    if settings.auth_provider == "dev":
        from parley.infrastructure.auth.dev import DevAuthProvider

        return DevAuthProvider()

    from parley.infrastructure.auth.supabase import SupabaseAuthProvider

    return SupabaseAuthProvider(settings.supabase_jwt_secret)


def get_auth_provider(request: Request) -> AuthProvider:
    """Get a cached auth provider instance (per FastAPI app)."""
    provider = getattr(request.app.state, "auth_provider", None)
    if provider is None:
        provider = build_auth_provider(get_settings())
        request.app.state.auth_provider = provider
    return provider


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    auth_provider: Annotated[AuthProvider, Depends(get_auth_provider)],
) -> AuthUser:
    """Dependency to get the current authenticated user.

    Raises:
        AuthenticationError: Missing, expired or invalid bearer token
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    try:
        user = await auth_provider.verify_token(credentials.credentials)
    except TokenExpiredError:
        logger.info("auth_token_expired")
        raise
    except AuthenticationError as e:
        logger.warning("auth_failed", error=e.message, invalid_token=isinstance(e, TokenInvalidError))
        raise

    # Rate limiter keys on the authenticated user
    request.state.user = user
    bind_chat_context(user_id=user.id)
    logger.debug("user_authenticated", user_id=user.id)
    return user


# Type alias for authenticated user
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
