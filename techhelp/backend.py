"""
The backend collaborators bundled together: relational store, auth,
object storage and realtime feed.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from techhelp.auth_service import AuthService
from techhelp.config import PUBLIC_URL, STORAGE_DIR
from techhelp.database import TableStore, init_engine, make_engine, metadata
from techhelp.realtime import RealtimeFeed
from techhelp.storage import ObjectStorage


@dataclass
class Backend:
    store: TableStore
    auth: AuthService
    storage: ObjectStorage
    feed: RealtimeFeed

    @property
    def engine(self):
        return self.store.engine


def init_backend(db_uri: Optional[str] = None, storage_dir: Optional[str] = None,
                 public_url: str = PUBLIC_URL) -> Backend:
    """Connect to the configured database and storage root."""
    engine = init_engine(db_uri)
    return _assemble(engine, Path(storage_dir or STORAGE_DIR), public_url)


def memory_backend(storage_dir, require_confirmation: bool = False,
                   secret_key: str = "test-secret") -> Backend:
    """A throwaway backend on in-memory SQLite (tests, demos)."""
    engine = make_engine("sqlite://")
    metadata.create_all(engine)
    backend = _assemble(engine, Path(storage_dir), "http://testserver")
    backend.auth.require_confirmation = require_confirmation
    backend.auth.secret_key = secret_key
    return backend


def _assemble(engine, storage_dir: Path, public_url: str) -> Backend:
    feed = RealtimeFeed()
    store = TableStore(engine, feed)
    return Backend(
        store=store,
        auth=AuthService(store),
        storage=ObjectStorage(storage_dir, public_url),
        feed=feed,
    )
