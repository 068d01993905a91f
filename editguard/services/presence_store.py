from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select

from editguard.db.session import SessionFactory
from editguard.models.edit_session import EditSession
from editguard.schemas.edit_session import EditSessionData
from editguard.services.change_feed import ChangeFeed


class PresenceStore:
    """
    SQL-backed store of `edit_session` rows.

    Each call runs in its own short session so the store can be shared by
    request handlers and heartbeat threads. Successful writes publish on
    the change feed after commit. Database errors propagate to the caller.
    """

    def __init__(self, session_factory: SessionFactory, feed: ChangeFeed | None = None):
        self.session_factory = session_factory
        self.feed = feed

    def _publish(self, resource_type: str, resource_id: str) -> None:
        if self.feed is not None:
            self.feed.publish(resource_type, resource_id)

    @staticmethod
    def _find(db, *, user_id: str, resource_type: str, resource_id: str) -> EditSession | None:
        return db.execute(
            select(EditSession)
            .where(EditSession.user_id == user_id)
            .where(EditSession.resource_type == resource_type)
            .where(EditSession.resource_id == resource_id)
        ).scalar_one_or_none()

    def upsert(
        self,
        *,
        user_id: str,
        resource_type: str,
        resource_id: str,
        now: datetime,
    ) -> EditSessionData:
        with self.session_factory() as db:
            row = self._find(
                db,
                user_id=user_id,
                resource_type=resource_type,
                resource_id=resource_id,
            )
            if row is None:
                row = EditSession(
                    user_id=user_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    started_at=now,
                    last_heartbeat=now,
                )
                db.add(row)
            else:
                row.started_at = now
                row.last_heartbeat = now
            db.commit()
            data = EditSessionData.model_validate(row)
        self._publish(resource_type, resource_id)
        return data

    def touch(
        self,
        *,
        user_id: str,
        resource_type: str,
        resource_id: str,
        now: datetime,
    ) -> bool:
        """Bump last_heartbeat; False when the row no longer exists."""
        with self.session_factory() as db:
            row = self._find(
                db,
                user_id=user_id,
                resource_type=resource_type,
                resource_id=resource_id,
            )
            if row is None:
                return False
            row.last_heartbeat = now
            db.commit()
        self._publish(resource_type, resource_id)
        return True

    def delete(self, *, user_id: str, resource_type: str, resource_id: str) -> bool:
        with self.session_factory() as db:
            result = db.execute(
                delete(EditSession)
                .where(EditSession.user_id == user_id)
                .where(EditSession.resource_type == resource_type)
                .where(EditSession.resource_id == resource_id)
            )
            db.commit()
            removed = bool(result.rowcount)
        if removed:
            self._publish(resource_type, resource_id)
        return removed

    def query_active(
        self,
        resource_type: str,
        resource_id: str,
        since: datetime,
    ) -> list[EditSessionData]:
        with self.session_factory() as db:
            rows = db.execute(
                select(EditSession)
                .where(EditSession.resource_type == resource_type)
                .where(EditSession.resource_id == resource_id)
                .where(EditSession.last_heartbeat > since)
                .order_by(EditSession.started_at.asc(), EditSession.id.asc())
            ).scalars().all()
            return [EditSessionData.model_validate(row) for row in rows]

    def purge_stale(self, cutoff: datetime) -> int:
        with self.session_factory() as db:
            stale = db.execute(
                select(EditSession.resource_type, EditSession.resource_id)
                .where(EditSession.last_heartbeat <= cutoff)
                .distinct()
            ).all()
            result = db.execute(delete(EditSession).where(EditSession.last_heartbeat <= cutoff))
            db.commit()
            removed = int(result.rowcount or 0)
        for resource_type, resource_id in stale:
            self._publish(resource_type, resource_id)
        return removed
