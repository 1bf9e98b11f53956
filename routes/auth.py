from flask import Blueprint, request, current_app, g
import models
from models import db
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from datetime import timedelta
import logging

import auth_service
from utils import (error_response, success_response, log_success, sanitize_input,
                   validate_email, validate_json_structure)

# Configure logging
logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/api/auth')

INVALID_CREDENTIALS = 'Credenciais inválidas'
MIN_PASSWORD_LENGTH = 6


def get_request_token():
    """Token Bearer do header Authorization, ou o cookie session_token"""
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        token = header[len('Bearer '):].strip()
        if token:
            return token
    return request.cookies.get('session_token')


def require_auth():
    """
    Valida o token da requisição e resolve o tenant

    Retorna o usuário autenticado, ou a resposta 401 pronta para devolver.
    Define g.current_user, g.current_session e g.tenant_id.
    """
    token = get_request_token()
    if not token:
        return error_response(
            error_type='permission',
            message='Acesso não autorizado. Faça login para continuar.',
            status_code=401
        )

    session = auth_service.resolve_session(token)
    if session is None:
        return error_response(
            error_type='permission',
            message='Sessão expirada. Faça login novamente.',
            status_code=401
        )

    g.current_user = session.user
    g.current_session = session
    g.tenant_id = auth_service.resolve_tenant_id(session.user, current_app.config['DEFAULT_TENANT_ID'])
    return session.user


def require_admin():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    if not user.is_admin:
        return error_response(
            error_type='permission',
            message='Acesso negado. Permissões de administrador necessárias.',
            status_code=403,
            log_context={'path': request.path}
        )

    return user


@bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}

    validation = validate_json_structure(data, ['username', 'password'])
    if not validation['valid']:
        return error_response(
            error_type='validation',
            message='Username e password são obrigatórios',
            details=validation['message']
        )

    username = str(data['username']).strip()
    password = str(data['password'])

    auth_service.purge_expired_sessions()

    user = auth_service.authenticate(username, password)
    if user is None:
        # Mesmo corpo para usuário inexistente, inativo ou senha errada
        return error_response(
            error_type='permission',
            message=INVALID_CREDENTIALS,
            status_code=401,
            log_context={'attempted_username': username}
        )

    ttl = timedelta(hours=current_app.config['SESSION_TTL_HOURS'])
    session = auth_service.create_session(user, ttl=ttl)

    log_success('login', f'Login realizado para {user.username}', {'user_id': user.id})

    return success_response(
        data={
            'user': user.to_dict(),
            'session_token': session.session_token,
            'expires_at': session.expires_at.isoformat(),
        },
        message='Login realizado com sucesso!'
    )


@bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}

    validation = validate_json_structure(data, ['username', 'email', 'password', 'full_name'])
    if not validation['valid']:
        return error_response(
            error_type='validation',
            message='Todos os campos são obrigatórios',
            details=validation['message']
        )

    password = str(data['password'])
    if len(password) < MIN_PASSWORD_LENGTH:
        return error_response(
            error_type='validation',
            message=f'A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres',
            field='password'
        )

    email_check = validate_email(str(data['email']).strip())
    if not email_check['valid']:
        return error_response(error_type='validation', message=email_check['message'], field='email')

    username = sanitize_input(data['username'], 50)
    email = email_check['formatted']

    existing = models.User.query.filter(
        or_(models.User.username == username, models.User.email == email)
    ).first()
    if existing:
        return error_response(error_type='validation', message='Username ou email já estão em uso')

    user = models.User(
        username=username,
        email=email,
        password_hash=auth_service.hash_password(password),
        full_name=sanitize_input(data['full_name'], 100),
        empresa_id=current_app.config['DEFAULT_TENANT_ID'],
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response(error_type='validation', message='Username ou email já estão em uso')

    log_success('register', f'Usuário registrado: {user.username}', {'user_id': user.id})

    return success_response(data=user.to_dict(), message='Usuário criado com sucesso!', status_code=201)


@bp.route('/logout', methods=['POST'])
def logout():
    """
    Encerra a sessão do token apresentado

    Sem token: 401. Token já revogado ou vencido: sucesso, logout repetido não é erro.
    """
    token = get_request_token()
    if not token:
        return error_response(
            error_type='permission',
            message='Acesso não autorizado. Faça login para continuar.',
            status_code=401
        )

    auth_service.revoke_session(token)

    return success_response(message='Logout realizado com sucesso!')


@bp.route('/me')
def me():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    return success_response(data=user.to_dict())
