from flask import Blueprint, request
import models
from models import db, utcnow
import logging

from routes.auth import require_admin
from utils import error_response, success_response, log_success, get_current_tenant_id

# Configure logging
logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__, url_prefix='/api/users')

VALID_ROLES = [role.value for role in models.UserRole]


@bp.route('')
def list_users():
    user = require_admin()
    if not isinstance(user, models.User):
        return user

    users = models.User.query.filter_by(empresa_id=get_current_tenant_id()) \
        .order_by(models.User.created_at.desc(), models.User.id.desc()).all()
    return success_response(data=[u.to_dict() for u in users])


@bp.route('/<int:user_id>', methods=['PUT'])
def update_user(user_id):
    user = require_admin()
    if not isinstance(user, models.User):
        return user

    target_user = models.User.query.filter_by(id=user_id, empresa_id=get_current_tenant_id()).first()
    if target_user is None:
        return error_response(error_type='not_found', message='Usuário não encontrado', status_code=404)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response(error_type='validation', message='Os dados devem ser um objeto JSON válido')

    role = data.get('role')
    if role is not None and role not in VALID_ROLES:
        return error_response(
            error_type='validation',
            message='Papel inválido',
            details=f'Valores aceitos: {", ".join(VALID_ROLES)}',
            field='role'
        )

    is_active = data.get('is_active')
    if is_active is not None and not isinstance(is_active, bool):
        return error_response(error_type='validation', message='is_active deve ser true ou false', field='is_active')

    if target_user.id == user.id and (is_active is False or (role is not None and role != models.UserRole.ADMIN.value)):
        return error_response(
            error_type='business',
            message='Você não pode remover o próprio acesso de administrador'
        )

    if role is not None:
        target_user.role = role
    if is_active is not None:
        target_user.is_active = is_active
    target_user.updated_at = utcnow()
    db.session.commit()

    log_success('user_updated', f'Usuário {target_user.username} atualizado',
                {'target_user_id': target_user.id, 'role': target_user.role, 'is_active': target_user.is_active})

    return success_response(data=target_user.to_dict(), message='Usuário atualizado com sucesso!')
