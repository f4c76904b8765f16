from __future__ import annotations
from flask import Blueprint, request, g
from facilityops import get_db
from facilityops.decorators.auth import require_permissions
from facilityops.decorators.audit import audit_log
from facilityops.errors import NotFound
from facilityops.models.notification import Notification
from facilityops.services.notifications import notification_dict
from facilityops.utils.listing import apply_pagination, cached_list_response
from facilityops.utils.validation import require_int

notify_bp = Blueprint('notifications', __name__)


@notify_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('NOTIFY.READ')
def list_notifications():
    session = get_db()
    q = session.query(Notification).filter(Notification.user_id == g.user_id)
    if request.args.get('unread') == 'true':
        q = q.filter(Notification.read.is_(False))
    if request.args.get('company_id'):
        q = q.filter(Notification.company_id == require_int(request.args['company_id'], 'company_id'))
    q = q.order_by(Notification.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((n.updated_at for n in rows if n.updated_at), default=None)
    return cached_list_response([notification_dict(n) for n in rows], total, limit, offset, latest_ts)


@notify_bp.post('/<int:notification_id>/read')
@require_permissions('NOTIFY.READ')
@audit_log('NOTIFY.READ', entity='Notification', entity_id_key='id')
def mark_read(notification_id: int):
    session = get_db()
    n = session.get(Notification, notification_id)
    # other users' notifications are indistinguishable from missing ones
    if not n or n.user_id != g.user_id:
        raise NotFound('Notification not found')
    n.read = True
    session.commit()
    return notification_dict(n)
