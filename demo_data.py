"""
Respostas de demonstração usadas pelo cliente quando a API não está acessível

Cada endpoint conhecido tem um handler registrado com @register; o cliente
resolve o handler pelo membro de Endpoint, nunca pelo texto da rota.
"""
from datetime import date, timedelta
from enum import Enum


class Endpoint(Enum):
    HEALTH = '/health'
    AUTH_ME = '/api/auth/me'
    DASHBOARD = '/api/dashboard'
    PRODUTOS = '/api/produtos'
    VENDAS = '/api/vendas'
    CATEGORIAS = '/api/categorias'
    NOTIFICATIONS = '/api/notifications'
    FINANCEIRO = '/api/financeiro'

    @classmethod
    def from_path(cls, path):
        """Endpoint para uma rota como '/api/vendas?x=1'; None se não for conhecida"""
        clean = '/' + path.split('?', 1)[0].strip('/')
        for endpoint in cls:
            if endpoint.value == clean:
                return endpoint
        return None


class DemoRegistry:
    def __init__(self):
        self._handlers = {}

    def register(self, endpoint):
        def decorator(func):
            if endpoint in self._handlers:
                raise ValueError(f"Endpoint {endpoint.name} já possui handler de demonstração")
            self._handlers[endpoint] = func
            return func
        return decorator

    def __contains__(self, endpoint):
        return endpoint in self._handlers

    def endpoints(self):
        return set(self._handlers)

    def respond(self, endpoint, params=None):
        """Envelope de sucesso com o payload de demonstração do endpoint"""
        handler = self._handlers.get(endpoint)
        if handler is None:
            raise KeyError(endpoint)
        response = {'success': True, 'demo': True}
        response.update(handler(params or {}))
        return response


registry = DemoRegistry()
register = registry.register


# ================= ENVELOPES DE LISTAGEM =================
# Mesmos campos extras que as rotas GET da API devolvem

LOW_STOCK_THRESHOLD = 5


def products_envelope(products):
    low_stock = [dict(p) for p in products if (p.get('stock_quantity') or 0) <= LOW_STOCK_THRESHOLD]
    return {'data': [dict(p) for p in products], 'totalItens': len(products),
            'alertas': len(low_stock), 'itensBaixoEstoque': low_stock}


def sales_envelope(sales):
    return {'data': [dict(s) for s in sales], 'total': len(sales),
            'receitaTotal': round(sum(s.get('total_amount') or 0 for s in sales), 2)}


def notifications_envelope(notifications):
    return {'data': [dict(n) for n in notifications],
            'unread_count': sum(1 for n in notifications if not n.get('is_read'))}


def financial_envelope(accounts):
    totals = {'receitas': 0.0, 'despesas': 0.0, 'receitas_pendentes': 0.0, 'despesas_pendentes': 0.0}
    for account in accounts:
        amount = account.get('amount') or 0
        if account.get('type') == 'receita':
            totals['receitas' if account.get('status') == 'recebido' else 'receitas_pendentes'] += amount
        elif account.get('type') == 'despesa':
            totals['despesas' if account.get('status') == 'pago' else 'despesas_pendentes'] += amount

    resumo = {key: round(value, 2) for key, value in totals.items()}
    resumo['saldo_atual'] = round(totals['receitas'] - totals['despesas'], 2)
    resumo['saldo_previsto'] = round(
        totals['receitas'] + totals['receitas_pendentes'] - totals['despesas'] - totals['despesas_pendentes'], 2)
    return {'data': [dict(a) for a in accounts], 'total': len(accounts), 'resumo': resumo}


LIST_ENVELOPES = {
    Endpoint.PRODUTOS: products_envelope,
    Endpoint.VENDAS: sales_envelope,
    Endpoint.NOTIFICATIONS: notifications_envelope,
    Endpoint.FINANCEIRO: financial_envelope,
}


def list_envelope(endpoint, records):
    """Corpo de uma listagem no formato da rota correspondente da API"""
    build = LIST_ENVELOPES.get(endpoint)
    if build is None:
        return {'data': list(records)}
    return build(records)


DEMO_CATEGORIES = [
    {'id': 1, 'name': 'Geral', 'description': 'Produtos diversos'},
    {'id': 2, 'name': 'Eletrônicos', 'description': 'Dispositivos eletrônicos'},
    {'id': 3, 'name': 'Alimentação', 'description': 'Produtos alimentícios'},
    {'id': 4, 'name': 'Limpeza', 'description': 'Produtos de limpeza'},
    {'id': 5, 'name': 'Bebidas', 'description': 'Bebidas em geral'},
]

DEMO_PRODUCTS = [
    {'id': 1, 'name': 'Café em Grãos', 'price': 24.90, 'stock_quantity': 50, 'min_stock': 5,
     'category': 'Alimentação', 'categoria': 'Alimentação', 'sku': 'CF-PREM01', 'is_active': True},
    {'id': 2, 'name': 'Leite', 'price': 6.50, 'stock_quantity': 25, 'min_stock': 5,
     'category': 'Alimentação', 'categoria': 'Alimentação', 'sku': None, 'is_active': True},
    {'id': 3, 'name': 'Detergente', 'price': 3.90, 'stock_quantity': 3, 'min_stock': 5,
     'category': 'Limpeza', 'categoria': 'Limpeza', 'sku': 'DT-LIQ01', 'is_active': True},
]

DEMO_SALES = [
    {'id': 1, 'sale_code': 'V0001', 'total_amount': 5.00, 'total_items': 1, 'payment_method': 'dinheiro',
     'status': 'completed', 'items': [{'product_name': 'Café Expresso', 'quantity': 1,
                                       'unit_price': 5.00, 'total_price': 5.00}]},
    {'id': 2, 'sale_code': 'V0002', 'total_amount': 9.00, 'total_items': 2, 'payment_method': 'cartão',
     'status': 'completed', 'items': [{'product_name': 'Pão de Queijo', 'quantity': 2,
                                       'unit_price': 4.50, 'total_price': 9.00}]},
]

DEMO_NOTIFICATIONS = [
    {'id': 1, 'title': 'Bem-vindo ao BizFlow', 'message': 'Modo demonstração ativo: os dados não são gravados no servidor.',
     'type': 'system', 'priority': 'medium', 'is_read': False},
    {'id': 2, 'title': '⚠️ Estoque Baixo', 'message': 'O produto "Detergente" está com apenas 3 unidades.',
     'type': 'stock', 'priority': 'high', 'is_read': False},
]


@register(Endpoint.HEALTH)
def demo_health(params):
    return {'status': 'OK', 'database': 'demo', 'version': 'demo'}


@register(Endpoint.AUTH_ME)
def demo_me(params):
    return {'data': {'id': 0, 'username': 'demo', 'full_name': 'Usuário Demonstração', 'role': 'user'}}


@register(Endpoint.DASHBOARD)
def demo_dashboard(params):
    today = date.today()
    revenue = round(sum(s['total_amount'] for s in DEMO_SALES), 2)
    return {'data': {
        'receitaTotal': revenue,
        'totalVendas': len(DEMO_SALES),
        'totalItensVendidos': sum(s['total_items'] for s in DEMO_SALES),
        'ticketMedio': round(revenue / len(DEMO_SALES), 2),
        'alertasEstoque': products_envelope(DEMO_PRODUCTS)['alertas'],
        'totalItensEstoque': len(DEMO_PRODUCTS),
        'tendenciaVendas': [
            {'date': (today - timedelta(days=offset)).isoformat(), 'sales_count': 1, 'daily_revenue': sale['total_amount']}
            for offset, sale in enumerate(DEMO_SALES)
        ],
    }}


@register(Endpoint.PRODUTOS)
def demo_products(params):
    return products_envelope(DEMO_PRODUCTS)


@register(Endpoint.VENDAS)
def demo_sales(params):
    return sales_envelope(DEMO_SALES)


@register(Endpoint.CATEGORIAS)
def demo_categories(params):
    return {'data': [dict(c) for c in DEMO_CATEGORIES]}


@register(Endpoint.NOTIFICATIONS)
def demo_notifications(params):
    return notifications_envelope(DEMO_NOTIFICATIONS)


@register(Endpoint.FINANCEIRO)
def demo_financial(params):
    return financial_envelope([])
