"""Authentication infrastructure."""

from parley.infrastructure.auth.dev import DevAuthProvider
from parley.infrastructure.auth.provider import AuthProvider, AuthUser
from parley.infrastructure.auth.supabase import SupabaseAuthProvider

__all__ = [
    "AuthProvider",
    "AuthUser",
    "DevAuthProvider",
    "SupabaseAuthProvider",
]
