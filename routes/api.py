from flask import Blueprint, request, current_app
import models
from models import db, utcnow
from datetime import timedelta
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
import logging

import notification_service
from routes.auth import require_auth
from utils import (error_response, success_response, log_success, get_current_tenant_id,
                   categorize_product_name, format_sale_code, sanitize_input,
                   validate_json_structure, validate_numeric_range, validate_integer_range,
                   DEFAULT_CATEGORY)

# Configure logging
logger = logging.getLogger(__name__)

bp = Blueprint('api', __name__, url_prefix='/api')

# Diferença tolerada entre o total informado pelo cliente e o calculado
PRICE_TOLERANCE = 0.01

# Chaves aceitas no JSON de produto: nome em português primeiro, depois o da coluna
PRODUCT_FIELD_ALIASES = {
    'name': ('produto', 'name'),
    'stock_quantity': ('quantidade', 'stock_quantity'),
    'min_stock': ('minimo', 'min_stock'),
    'price': ('preco', 'price'),
    'cost': ('custo', 'cost'),
    'barcode': ('codigo_barras', 'barcode'),
    'sku': ('sku',),
    'description': ('descricao', 'description'),
}


def _pick(data, keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _parse_product_payload(data, partial=False):
    """
    Normaliza o JSON de produto para os nomes das colunas

    Returns:
        (fields, None) em caso de sucesso, ou (None, (mensagem, campo))
    """
    fields = {}
    for column, keys in PRODUCT_FIELD_ALIASES.items():
        value = _pick(data, keys)
        if value is not None:
            fields[column] = value

    if not partial:
        if not fields.get('name') or 'stock_quantity' not in fields:
            return None, ('Produto e quantidade são obrigatórios', None)

    if 'name' in fields:
        fields['name'] = sanitize_input(fields['name'], 200)
        if not fields['name']:
            return None, ('Nome do produto não pode ser vazio', 'produto')

    for column, label in (('stock_quantity', 'Quantidade'), ('min_stock', 'Estoque mínimo')):
        if column in fields:
            check = validate_integer_range(fields[column], min_val=0, field_name=label)
            if not check['valid']:
                return None, (check['message'], column)
            fields[column] = check['value']

    for column, label in (('price', 'Preço'), ('cost', 'Custo')):
        if column in fields:
            check = validate_numeric_range(fields[column], min_val=0, field_name=label)
            if not check['valid']:
                return None, (check['message'], column)
            fields[column] = check['value']

    for column in ('sku', 'barcode', 'description'):
        if column in fields:
            fields[column] = sanitize_input(fields[column], 1000 if column == 'description' else 100) or None

    categoria = _pick(data, ('categoria', 'category_id', 'category'))
    if categoria is not None:
        category = None
        if isinstance(categoria, bool):
            return None, ('Categoria inválida', 'categoria')
        if isinstance(categoria, int) or str(categoria).isdigit():
            category = db.session.get(models.Category, int(categoria))
            if category is None:
                return None, ('Categoria não encontrada', 'categoria')
        else:
            category = models.Category.query.filter_by(name=str(categoria).strip()).first()
            if category is None:
                fields['category'] = sanitize_input(categoria, 100)
        if category is not None:
            fields['category_id'] = category.id
            fields['category'] = category.name

    return fields, None


def _default_category(product_name):
    """Categoria pela regra de nome; a categoria de referência correspondente, se houver"""
    name = categorize_product_name(product_name) or DEFAULT_CATEGORY
    return name, models.Category.query.filter_by(name=name).first()


def _low_stock_threshold():
    return current_app.config['LOW_STOCK_THRESHOLD']


# ================= DASHBOARD =================

@bp.route('/dashboard')
def dashboard():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    tenant_id = get_current_tenant_id()
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    try:
        sales_today = db.session.query(
            func.count(models.Sale.id),
            func.coalesce(func.sum(models.Sale.total_amount), 0),
            func.coalesce(func.sum(models.Sale.total_items), 0),
            func.coalesce(func.avg(models.Sale.total_amount), 0),
        ).filter(models.Sale.empresa_id == tenant_id, models.Sale.sale_date >= today).one()

        active_products = models.Product.query.filter(
            models.Product.empresa_id == tenant_id,
            models.Product.is_active.is_(True)
        )
        low_stock_count = active_products.filter(
            models.Product.stock_quantity <= _low_stock_threshold()
        ).count()

        sale_day = func.date(models.Sale.sale_date)
        trend_rows = db.session.query(
            sale_day,
            func.count(models.Sale.id),
            func.sum(models.Sale.total_amount),
        ).filter(
            models.Sale.empresa_id == tenant_id,
            models.Sale.sale_date >= today - timedelta(days=7)
        ).group_by(sale_day).order_by(sale_day).all()

        data = {
            'receitaTotal': round(float(sales_today[1]), 2),
            'totalVendas': int(sales_today[0]),
            'totalItensVendidos': int(sales_today[2]),
            'ticketMedio': round(float(sales_today[3]), 2),
            'alertasEstoque': low_stock_count,
            'totalItensEstoque': active_products.count(),
            'tendenciaVendas': [
                {'date': str(day), 'sales_count': count, 'daily_revenue': round(float(revenue or 0), 2)}
                for day, count, revenue in trend_rows
            ],
        }
        return success_response(data=data)

    except Exception:
        db.session.rollback()
        return error_response(
            error_type='server',
            message='Erro ao buscar dados do dashboard',
            status_code=500,
            exc_info=True
        )


# ================= PRODUTOS =================

@bp.route('/produtos')
def list_products():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    tenant_id = get_current_tenant_id()
    products = models.Product.query.filter(
        models.Product.empresa_id == tenant_id,
        models.Product.is_active.is_(True)
    ).order_by(models.Product.name).all()

    threshold = _low_stock_threshold()
    low_stock = [p.to_dict() for p in products if (p.stock_quantity or 0) <= threshold]

    return success_response(
        data=[p.to_dict() for p in products],
        totalItens=len(products),
        alertas=len(low_stock),
        itensBaixoEstoque=low_stock
    )


@bp.route('/produtos', methods=['POST'])
def create_product():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response(error_type='validation', message='Os dados devem ser um objeto JSON válido')

    fields, problem = _parse_product_payload(data)
    if problem:
        message, field = problem
        return error_response(error_type='validation', message=message, field=field)

    if 'category' not in fields:
        category_name, category = _default_category(fields['name'])
        fields['category'] = category_name
        if category is not None:
            fields['category_id'] = category.id

    fields.setdefault('price', 0.0)
    fields.setdefault('cost', 0.0)

    product = models.Product(empresa_id=get_current_tenant_id(), **fields)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response(error_type='validation', message='SKU já cadastrado', field='sku')

    log_success('product_created', f'Produto criado: {product.name}', {'product_id': product.id})

    return success_response(data=product.to_dict(), message='Item adicionado ao estoque! 📦', status_code=201)


def _get_tenant_product(product_id):
    return models.Product.query.filter_by(id=product_id, empresa_id=get_current_tenant_id()).first()


@bp.route('/produtos/<int:product_id>', methods=['PUT'])
def update_product(product_id):
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    product = _get_tenant_product(product_id)
    if product is None:
        return error_response(error_type='not_found', message='Produto não encontrado', status_code=404)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response(error_type='validation', message='Os dados devem ser um objeto JSON válido')

    fields, problem = _parse_product_payload(data, partial=True)
    if problem:
        message, field = problem
        return error_response(error_type='validation', message=message, field=field)

    for column, value in fields.items():
        setattr(product, column, value)
    product.updated_at = utcnow()

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response(error_type='validation', message='SKU já cadastrado', field='sku')

    return success_response(data=product.to_dict(), message='Produto atualizado com sucesso! ✅')


@bp.route('/produtos/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    product = _get_tenant_product(product_id)
    if product is None:
        return error_response(error_type='not_found', message='Produto não encontrado', status_code=404)

    # Soft delete: vendas antigas continuam apontando para o produto
    product.is_active = False
    product.updated_at = utcnow()
    db.session.commit()

    log_success('product_deleted', f'Produto desativado: {product.name}', {'product_id': product.id})

    return success_response(message='Produto deletado com sucesso! 🗑️')


# ================= VENDAS =================

@bp.route('/vendas')
def list_sales():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    sales = models.Sale.query.filter_by(empresa_id=get_current_tenant_id()) \
        .order_by(models.Sale.sale_date.desc(), models.Sale.id.desc()) \
        .limit(50).all()

    return success_response(
        data=[sale.to_dict(include_items=True) for sale in sales],
        total=len(sales),
        receitaTotal=round(sum(sale.total_amount for sale in sales), 2)
    )


def _parse_sale_items(raw_items, tenant_id):
    """
    Valida os itens da venda e calcula os totais

    Returns:
        (lista de (produto, nome, quantidade, preço unitário, total), None) ou (None, (mensagem, campo))
    """
    if not isinstance(raw_items, list) or not raw_items:
        return None, ('A venda precisa de pelo menos um item', 'items')

    parsed = []
    reserved = {}
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            return None, (f'Item {index + 1} inválido', 'items')

        product = None
        product_id = _pick(item, ('product_id', 'id'))
        if product_id is not None:
            id_check = validate_integer_range(product_id, min_val=1, field_name='Produto')
            if not id_check['valid']:
                return None, (id_check['message'], 'product_id')
            product_id = id_check['value']
            # Trava o produto até o commit da venda: a checagem de estoque e a baixa veem o mesmo valor
            product = models.Product.query.filter_by(
                id=product_id, empresa_id=tenant_id, is_active=True
            ).with_for_update().first()
            if product is None:
                return None, (f'Produto {product_id} não encontrado', 'items')

        quantity_check = validate_integer_range(item.get('quantity'), min_val=1, field_name='Quantidade')
        if not quantity_check['valid']:
            return None, (quantity_check['message'], 'quantity')
        quantity = quantity_check['value']

        unit_price = _pick(item, ('unit_price', 'price'))
        if unit_price is None and product is not None:
            unit_price = product.price
        price_check = validate_numeric_range(unit_price, min_val=0, field_name='Preço unitário')
        if not price_check['valid']:
            return None, (price_check['message'], 'unit_price')
        unit_price = price_check['value']

        total_price = round(quantity * unit_price, 2)
        client_total = _pick(item, ('total_price', 'total'))
        if client_total is not None:
            total_check = validate_numeric_range(client_total, field_name='Total do item')
            if not total_check['valid'] or abs(total_check['value'] - total_price) > PRICE_TOLERANCE:
                return None, (f'Total do item {index + 1} não confere com quantidade × preço unitário',
                              'total_price')

        name = _pick(item, ('product_name', 'name')) or (product.name if product else None)
        if not name:
            return None, (f'Item {index + 1} sem produto', 'items')

        if product is not None:
            reserved[product.id] = reserved.get(product.id, 0) + quantity
            if (product.stock_quantity or 0) < reserved[product.id]:
                return None, (f'Estoque insuficiente: apenas {product.stock_quantity} unidades de {product.name}',
                              'quantity')

        parsed.append((product, sanitize_input(name, 200), quantity, unit_price, total_price))

    return parsed, None


@bp.route('/vendas', methods=['POST'])
def create_sale():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    data = request.get_json(silent=True)
    validation = validate_json_structure(data, ['items'])
    if not validation['valid']:
        return error_response(error_type='validation', message=validation['message'], field='items')

    tenant_id = get_current_tenant_id()
    items, problem = _parse_sale_items(data['items'], tenant_id)
    if problem:
        db.session.rollback()
        message, field = problem
        return error_response(error_type='validation', message=message, field=field)

    total_amount = round(sum(item[4] for item in items), 2)
    if data.get('total_amount') is not None:
        total_check = validate_numeric_range(data['total_amount'], field_name='Total da venda')
        if not total_check['valid'] or abs(total_check['value'] - total_amount) > PRICE_TOLERANCE:
            db.session.rollback()
            return error_response(
                error_type='validation',
                message='Total da venda não confere com a soma dos itens',
                field='total_amount'
            )

    try:
        sale = models.Sale(
            empresa_id=tenant_id,
            total_amount=total_amount,
            total_items=sum(item[2] for item in items),
            payment_method=sanitize_input(data.get('payment_method') or 'dinheiro', 50),
            notes=sanitize_input(data.get('notes'), 1000) or None,
            status='completed',
        )
        db.session.add(sale)
        db.session.flush()
        sale.sale_code = format_sale_code(sale.id)

        low_stock_products = []
        for product, name, quantity, unit_price, total_price in items:
            db.session.add(models.SaleItem(
                sale_id=sale.id,
                product_id=product.id if product else None,
                product_name=name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
            ))
            if product is not None:
                product.stock_quantity = (product.stock_quantity or 0) - quantity
                if product.is_low_stock and product not in low_stock_products:
                    low_stock_products.append(product)

        notification_service.create_sale_notification(sale, commit=False)
        for product in low_stock_products:
            notification_service.create_low_stock_notification(product, commit=False)

        db.session.commit()

    except Exception:
        db.session.rollback()
        return error_response(
            error_type='server',
            message='Erro ao registrar venda',
            status_code=500,
            exc_info=True
        )

    log_success('sale_registered', f'Venda {sale.sale_code} registrada',
                {'sale_id': sale.id, 'amount': sale.total_amount})

    return success_response(
        data=sale.to_dict(include_items=True),
        message='Venda registrada com sucesso! 💰',
        status_code=201
    )


# ================= CATEGORIAS =================

@bp.route('/categorias')
def list_categories():
    user = require_auth()
    if not isinstance(user, models.User):
        return user

    categories = models.Category.query.order_by(models.Category.name).all()
    return success_response(data=[c.to_dict() for c in categories])
