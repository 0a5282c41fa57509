"""Per-request session context: who is calling and which session state is theirs."""

from dataclasses import dataclass
from typing import Optional

from local_store import LocalStore

ROLES = ("client", "service_provider")


@dataclass(frozen=True)
class SessionContext:
    """Identity asserted by the auth provider plus the browser session id."""

    user_id: Optional[str] = None
    role: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_provider(self) -> bool:
        return self.role == "service_provider"

    def local_store(self, db) -> LocalStore:
        return LocalStore.for_session(db, self.session_id or "")
