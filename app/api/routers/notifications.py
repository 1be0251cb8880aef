from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_current_actor
from app.domain.models import NotificationRead
from app.domain.permissions import Actor
from app.services.boundary_version_service import NotFoundError
from app.services.notification_service import NotificationService

router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    actor: CurrentActor,
    service: Service,
    unread_only: Annotated[bool, Query()] = False,
) -> list[NotificationRead]:
    rows = service.list_for_user(actor.user_id, unread_only=unread_only)
    return [NotificationRead.model_validate(row) for row in rows]


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(notification_id: int, actor: CurrentActor, service: Service) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.mark_read(actor.user_id, notification_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
