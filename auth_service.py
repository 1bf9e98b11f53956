"""
Autenticação por token de sessão

Senhas com bcrypt; tokens com secrets.token_hex, gravados em user_sessions com
expiração absoluta. Sessões vencidas são apagadas quando lidas e em cada login.
"""
import logging
import secrets
from datetime import timedelta

import bcrypt
from sqlalchemy import delete

import models
from models import db, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 64
DEFAULT_SESSION_TTL = timedelta(hours=24)
BCRYPT_ROUNDS = 12

# Mesmo custo dos hashes gravados, para o login de usuário inexistente levar o mesmo tempo
_DUMMY_HASH = bcrypt.hashpw(b'bizflow-dummy-password', bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode('utf-8')


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def check_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # hash corrompido no banco
        logger.warning("Hash de senha inválido encontrado durante login")
        return False


def generate_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def authenticate(username: str, password: str):
    """
    Retorna o usuário ativo cujas credenciais conferem, ou None

    Usuário inexistente, inativo ou senha errada produzem o mesmo resultado.
    """
    user = models.User.query.filter_by(username=username, is_active=True).first()
    if user is None:
        check_password(password, _DUMMY_HASH)
        return None
    if not check_password(password, user.password_hash):
        return None
    return user


def create_session(user, ttl: timedelta = DEFAULT_SESSION_TTL):
    """Cria e persiste uma sessão nova para o usuário"""
    now = utcnow()
    session = models.UserSession(
        user_id=user.id,
        session_token=generate_session_token(),
        expires_at=now + ttl,
        created_at=now,
        updated_at=now,
    )
    db.session.add(session)
    db.session.commit()
    return session


def resolve_session(token: str):
    """
    Sessão válida para o token: não expirada e de usuário ativo

    Uma sessão expirada encontrada aqui é removida na hora.
    """
    if not token:
        return None

    session = models.UserSession.query.filter_by(session_token=token).first()
    if session is None:
        return None

    if session.is_expired():
        db.session.delete(session)
        db.session.commit()
        return None

    if session.user is None or not session.user.is_active:
        return None

    return session


def revoke_session(token: str) -> bool:
    """Apaga a sessão do token. Token inexistente não é erro."""
    result = db.session.execute(
        delete(models.UserSession).where(models.UserSession.session_token == token)
    )
    db.session.commit()
    return result.rowcount > 0


def purge_expired_sessions(now=None) -> int:
    """Remove todas as sessões vencidas; retorna quantas foram apagadas"""
    result = db.session.execute(
        delete(models.UserSession).where(models.UserSession.expires_at <= (now or utcnow()))
    )
    db.session.commit()
    if result.rowcount:
        logger.info(f"{result.rowcount} sessões expiradas removidas")
    return result.rowcount


def resolve_tenant_id(user, default_tenant_id: int) -> int:
    """Tenant da requisição: empresa do usuário, ou o tenant padrão configurado"""
    if user is not None and user.empresa_id:
        return user.empresa_id
    return default_tenant_id
