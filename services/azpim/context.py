"""Per-invocation context threaded through every command."""

from dataclasses import dataclass

from azpim.platform.base import AuthorizationService
from azpim.store import PersistentStore


@dataclass
class AuthContext:
    """Signed-in principal plus the collaborators bound to it.

    Built once per command after sign-in and passed explicitly; nothing
    about the principal is kept in module state.
    """

    user_id: str
    user_principal_name: str
    service: AuthorizationService
    store: PersistentStore
