from flask import Blueprint, request
import models

import notification_service
from routes.auth import require_auth
from utils import error_response, success_response, get_current_tenant_id, validate_integer_range

bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


def _parse_bool(value):
    if value is None:
        return None
    return value.strip().lower() in ('1', 'true', 'yes', 'sim')


@bp.route('')
def list_notifications():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    limit = validate_integer_range(request.args.get('limit', 20), min_val=1, max_val=100, field_name='limit')
    offset = validate_integer_range(request.args.get('offset', 0), min_val=0, field_name='offset')
    for check, field in ((limit, 'limit'), (offset, 'offset')):
        if not check['valid']:
            return error_response(error_type='validation', message=check['message'], field=field)

    tenant_id = get_current_tenant_id()
    notifications = notification_service.get_notifications(
        tenant_id, user.id,
        limit=limit['value'],
        offset=offset['value'],
        type=request.args.get('type'),
        is_read=_parse_bool(request.args.get('is_read')),
        priority=request.args.get('priority'),
    )

    return success_response(
        data=[n.to_dict() for n in notifications],
        unread_count=notification_service.get_unread_count(tenant_id, user.id)
    )


@bp.route('/<int:notification_id>/read', methods=['PUT'])
def mark_read(notification_id):
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    notification = notification_service.mark_as_read(notification_id, get_current_tenant_id(), user.id)
    if notification is None:
        return error_response(
            error_type='not_found',
            message='Notificação não encontrada ou acesso negado',
            status_code=404
        )

    return success_response(data=notification.to_dict(), message='Notificação marcada como lida')


@bp.route('/read-all', methods=['PUT'])
def mark_all_read():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    updated = notification_service.mark_all_as_read(get_current_tenant_id(), user.id)
    return success_response(data={'updatedCount': updated}, message='Todas as notificações foram marcadas como lidas')
