"""Abstract authentication provider interface.

Lets the API verify bearer tokens without knowing which identity service
issued them. Chat data is keyed by ``AuthUser.id`` only.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user data from auth provider."""

    id: str  # Provider's user ID (e.g., Supabase UUID)
    email: str | None = None
    email_verified: bool = False
    full_name: str | None = None


class AuthProvider(ABC):
    """Abstract authentication provider.

    Implementations:
    - SupabaseAuthProvider: HS256 JWTs issued by Supabase Auth
    - DevAuthProvider: accepts any token, local development only
    """

    @abstractmethod
    async def verify_token(self, token: str) -> AuthUser:
        """Verify a JWT token and return the authenticated user.

        Raises:
            TokenExpiredError: If the token has expired
            TokenInvalidError: If the token is invalid
            AuthenticationError: For other auth failures
        """

    async def close(self) -> None:
        return None
