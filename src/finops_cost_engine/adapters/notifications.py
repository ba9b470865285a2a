"""Notification emitter: persists in-app notification records.

Delivery (email, in-app push) is handled by a separate subsystem that reads
fin_notifications; this adapter only writes the rows, inside the caller's
transaction so a notification never outlives a rolled-back alert.
"""

from typing import Any

from finops_cost_engine.core.interfaces import INotificationRepository
from finops_cost_engine.core.models import NOTIFICATION_TYPES, Notification
from finops_cost_engine.errors import InvalidNotificationError
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)


class NotificationEmitter:
    """Writes Notification rows for budget alerts, anomalies and digests.

    Args:
        notification_repository: Repository persisting Notification rows.
    """

    def __init__(self, notification_repository: INotificationRepository) -> None:
        self._notification_repo = notification_repository

    async def emit(
        self,
        tenant_id: str,
        notification_type: str,
        title: str,
        message: str | None,
        link: str | None = None,
        link_text: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist one notification.

        Args:
            tenant_id: Owning tenant.
            notification_type: budget | anomaly | warning | info
            title: Short headline.
            message: Body text.
            link: Optional in-app route.
            link_text: Label for the link.
            metadata: Structured context for the delivery subsystem.

        Returns:
            The persisted Notification.

        Raises:
            InvalidNotificationError: If the notification type is not recognised.
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise InvalidNotificationError(
                f"Unknown notification type '{notification_type}'; expected one of {NOTIFICATION_TYPES}"
            )

        notification = Notification(
            tenant_id=tenant_id,
            type=notification_type,
            title=title,
            message=message,
            link=link,
            link_text=link_text,
            is_read=False,
            metadata_=metadata or {},
        )
        created = await self._notification_repo.create(notification)

        logger.info(
            "notification_emitted",
            tenant_id=tenant_id,
            notification_type=notification_type,
            title=title,
        )
        return created
