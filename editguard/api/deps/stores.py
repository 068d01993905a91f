from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from editguard.db.session import SessionFactory, get_session_factory
from editguard.services.change_feed import ChangeFeed
from editguard.services.presence_store import PresenceStore
from editguard.services.resource_store import ResourceStore


@lru_cache(maxsize=1)
def get_change_feed() -> ChangeFeed:
    return ChangeFeed()


def get_presence_store(
    session_factory: SessionFactory = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> PresenceStore:
    return PresenceStore(session_factory, feed)


def get_resource_store(
    session_factory: SessionFactory = Depends(get_session_factory),
) -> ResourceStore:
    return ResourceStore(session_factory)
