from sqlalchemy.orm import Session
from typing import Any, Optional

from .. import models


def create_notification(
    db: Session,
    user_id: int,
    type: models.NotificationType,
    message: str,
    link: str,
    data: Optional[dict[str, Any]] = None,
) -> models.Notification:
    db_obj = models.Notification(
        user_id=user_id, type=type, message=message, link=link, data=data
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj

