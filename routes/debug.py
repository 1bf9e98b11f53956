from flask import Blueprint
from sqlalchemy import inspect
import models
from models import db

from utils import success_response

# Registrado apenas com DEBUG_ENDPOINTS_ENABLED (desligado em produção por padrão)
bp = Blueprint('debug', __name__, url_prefix='/api/debug')


@bp.route('/users')
def debug_users():
    users = models.User.query.order_by(models.User.id).all()
    data = [
        {'id': u.id, 'username': u.username, 'email': u.email, 'role': u.role, 'is_active': u.is_active}
        for u in users
    ]
    return success_response(data=data, total=len(data))


@bp.route('/tables')
def debug_tables():
    inspector = inspect(db.engine)
    tables = {
        name: sorted(column['name'] for column in inspector.get_columns(name))
        for name in sorted(inspector.get_table_names())
    }
    return success_response(data=tables, total=len(tables))
