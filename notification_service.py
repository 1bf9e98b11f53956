"""
Notificações do BizFlow

Uma notificação pertence a um tenant e, opcionalmente, a um usuário. Sem
user_id ela é visível para todos os usuários do tenant.
"""
import logging

from sqlalchemy import case, or_

import models
from models import db, utcnow
from utils import format_currency_brl

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {'high': 1, 'medium': 2, 'low': 3}
VALID_TYPES = ('info', 'success', 'warning', 'error')


def _visible_to(empresa_id, user_id):
    return (
        models.Notification.empresa_id == empresa_id,
        or_(models.Notification.user_id.is_(None), models.Notification.user_id == user_id),
    )


def create_notification(empresa_id, title, message, type='info', priority='medium',
                        user_id=None, metadata=None, commit=True):
    notification = models.Notification(
        empresa_id=empresa_id,
        user_id=user_id,
        title=title,
        message=message,
        type=type if type in VALID_TYPES else 'info',
        priority=priority if priority in PRIORITY_ORDER else 'medium',
        extra_data=metadata or {},
    )
    db.session.add(notification)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info(f"Notificação criada: {title} (empresa {empresa_id})")
    return notification


def create_sale_notification(sale, commit=True):
    return create_notification(
        empresa_id=sale.empresa_id,
        title='💰 Nova Venda Realizada',
        message=f'Venda {sale.sale_code} realizada - Total: {format_currency_brl(sale.total_amount)}',
        type='success',
        priority='medium',
        metadata={
            'sale_id': sale.id,
            'sale_code': sale.sale_code,
            'total_amount': sale.total_amount,
            'items_count': sale.total_items,
            'category': 'sales',
        },
        commit=commit,
    )


def create_low_stock_notification(product, commit=True):
    return create_notification(
        empresa_id=product.empresa_id,
        title='⚠️ Estoque Baixo',
        message=(f'O produto "{product.name}" está com estoque baixo '
                 f'({product.stock_quantity} unidades). Estoque mínimo: {product.min_stock}'),
        type='warning',
        priority='high',
        metadata={
            'product_id': product.id,
            'product_name': product.name,
            'current_stock': product.stock_quantity,
            'min_stock': product.min_stock,
            'category': 'stock',
            'action_required': True,
        },
        commit=commit,
    )


def get_notifications(empresa_id, user_id, limit=20, offset=0, type=None, is_read=None, priority=None):
    """Notificações visíveis ao usuário, mais urgentes primeiro e depois as mais recentes"""
    query = models.Notification.query.filter(*_visible_to(empresa_id, user_id))

    if type:
        query = query.filter(models.Notification.type == type)
    if is_read is not None:
        query = query.filter(models.Notification.is_read == is_read)
    if priority:
        query = query.filter(models.Notification.priority == priority)

    priority_rank = case(PRIORITY_ORDER, value=models.Notification.priority, else_=4)

    return (query.order_by(priority_rank, models.Notification.created_at.desc(),
                           models.Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all())


def get_unread_count(empresa_id, user_id):
    return (models.Notification.query
            .filter(*_visible_to(empresa_id, user_id))
            .filter(models.Notification.is_read.is_(False))
            .count())


def mark_as_read(notification_id, empresa_id, user_id):
    """Marca uma notificação como lida; None se não existir ou não for visível ao usuário"""
    notification = (models.Notification.query
                    .filter(models.Notification.id == notification_id)
                    .filter(*_visible_to(empresa_id, user_id))
                    .first())
    if notification is None:
        return None

    notification.is_read = True
    notification.updated_at = utcnow()
    db.session.commit()
    return notification


def mark_all_as_read(empresa_id, user_id):
    updated = (models.Notification.query
               .filter(*_visible_to(empresa_id, user_id))
               .filter(models.Notification.is_read.is_(False))
               .update({'is_read': True, 'updated_at': utcnow()}, synchronize_session=False))
    db.session.commit()

    logger.info(f"{updated} notificações marcadas como lidas (empresa {empresa_id}, usuário {user_id})")
    return updated
