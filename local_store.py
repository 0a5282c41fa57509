"""Per-session key-value persistence for the cart and the theme flag."""

import re
from typing import Optional

from database import SESSIONS, get_document, set_fields, unset_fields

THEME_KEY = "theme"
CART_KEY = "cart"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class LocalStore:
    """Keyed JSON text blobs owned by one session.

    Backed by one document per session in the "sessions" collection, so any
    worker can serve the session. Single writer per key: concurrent writers
    from two tabs race and the last write wins.
    """

    def __init__(self, db, session_id: str):
        self.db = db
        self.session_id = session_id

    @classmethod
    def for_session(cls, db, session_id: str) -> "LocalStore":
        if not _SESSION_ID_RE.match(session_id or ""):
            raise ValueError("Invalid session id")
        return cls(db, session_id)

    def get_item(self, key: str) -> Optional[str]:
        doc = get_document(self.db, SESSIONS, self.session_id)
        return doc.get(key) if doc else None

    def set_item(self, key: str, value: str) -> None:
        set_fields(self.db, SESSIONS, self.session_id, {key: value})

    def remove_item(self, key: str) -> None:
        unset_fields(self.db, SESSIONS, self.session_id, key)


def get_theme(store: LocalStore) -> str:
    return "dark" if store.get_item(THEME_KEY) == "dark" else "light"


def set_theme(store: LocalStore, theme: str) -> str:
    if theme not in ("dark", "light"):
        raise ValueError(f"Unknown theme: {theme}")
    store.set_item(THEME_KEY, theme)
    return theme


def toggle_theme(store: LocalStore) -> str:
    return set_theme(store, "light" if get_theme(store) == "dark" else "dark")
