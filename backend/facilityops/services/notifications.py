from __future__ import annotations
"""Notification fan-out for issue lifecycle events.

Publishing happens after the issue write is committed and is fire-and-forget: a failing
sink is logged and never undoes or fails the transition.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple
from facilityops.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueNotice:
    issue_id: int
    company_id: int
    type: str
    message: str
    recipients: Tuple[int, ...] = field(default_factory=tuple)
    priority: Optional[str] = None


class NotificationSink:
    def publish(self, notice: IssueNotice) -> None:
        raise NotImplementedError

    def safe_publish(self, notice: IssueNotice) -> bool:
        try:
            self.publish(notice)
            return True
        except Exception:
            logger.exception('Notification delivery failed for issue %s (%s)', notice.issue_id, notice.type)
            return False


class DatabaseNotificationSink(NotificationSink):
    """Persists one Notification row per recipient in its own commit."""

    def __init__(self, session):
        self.session = session

    def publish(self, notice: IssueNotice) -> None:
        if not notice.recipients:
            return
        try:
            for user_id in notice.recipients:
                self.session.add(Notification(
                    user_id=user_id,
                    company_id=notice.company_id,
                    issue_id=notice.issue_id,
                    type=notice.type,
                    message=notice.message[:255],
                    priority=notice.priority,
                    read=False,
                ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


def notification_dict(n: Notification):
    return {
        'id': n.id,
        'user_id': n.user_id,
        'company_id': n.company_id,
        'issue_id': n.issue_id,
        'type': n.type,
        'message': n.message,
        'priority': n.priority,
        'read': n.read,
        'created_at': n.created_at.isoformat() if n.created_at else None,
    }


__all__ = ['IssueNotice', 'NotificationSink', 'DatabaseNotificationSink', 'notification_dict']
