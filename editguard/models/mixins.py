from datetime import datetime
import uuid

from sqlalchemy import DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column

from editguard.core.clock import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class ResourceMixin:
    """
    Columns shared by every editable resource.

    `updated_at` is the optimistic-concurrency version token, so it is set
    on the Python side at microsecond precision rather than by the
    database clock.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    created_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="system@local",
        server_default=text("'system@local'"),
    )
    last_changed_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="system@local",
        server_default=text("'system@local'"),
    )

    def to_dict(self) -> dict:
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}
