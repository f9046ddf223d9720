"""Session storage."""

from siteflow.storage.session_store import SessionStore

__all__ = ["SessionStore"]
