from __future__ import annotations

from collections.abc import Iterable

from sqlmodel import Session, col, select

from app.domain.models import Notification
from app.infra.db import get_engine
from app.services.boundary_version_service import NotFoundError

BOUNDARY_UPDATE_TYPE = "system_alert"


class NotificationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def notify_users(
        self,
        user_ids: Iterable[int],
        *,
        title: str,
        message: str,
        notification_type: str = BOUNDARY_UPDATE_TYPE,
    ) -> int:
        rows = [
            Notification(user_id=user_id, type=notification_type, title=title, message=message)
            for user_id in dict.fromkeys(user_ids)
        ]
        if not rows:
            return 0
        with self._session() as session:
            session.add_all(rows)
            session.commit()
        return len(rows)

    def list_for_user(self, user_id: int, *, unread_only: bool = False) -> list[Notification]:
        statement = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            statement = statement.where(col(Notification.is_read).is_(False))
        with self._session() as session:
            return list(
                session.exec(
                    statement.order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
                ).all()
            )

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        with self._session() as session:
            row = session.exec(
                select(Notification)
                .where(Notification.id == notification_id)
                .where(Notification.user_id == user_id)
            ).first()
            if row is None:
                raise NotFoundError("notification not found")
            row.is_read = True
            session.add(row)
            session.commit()
            session.refresh(row)
            return row
