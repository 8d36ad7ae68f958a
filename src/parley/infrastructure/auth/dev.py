"""Development authentication provider for local testing.

This provider bypasses real authentication and returns a fixed user.
NEVER use in production!
"""

from parley.infrastructure.auth.provider import AuthProvider, AuthUser
from parley.shared.logging import get_logger

logger = get_logger(__name__)

DEV_USER_ID = "00000000-0000-0000-0000-000000000001"


class DevAuthProvider(AuthProvider):
    """Accepts any token and returns the dev user."""

    async def verify_token(self, token: str) -> AuthUser:
        logger.warning(
            "dev_auth_used",
            message="Using development auth - DO NOT USE IN PRODUCTION",
        )
        return AuthUser(
            id=DEV_USER_ID,
            email="dev@parley.local",
            email_verified=True,
            full_name="Dev User",
        )
