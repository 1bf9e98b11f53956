"""
Tests para endpoints de API com casos de erro
Produtos, vendas, dashboard, notificações, financeiro, relatórios e usuários
"""
import json
from datetime import date

from sqlalchemy.orm import Query

from models import db, Product, Sale, Notification, FinancialAccount, Report, UserRole
import notification_service
from conftest import make_user


class TestEnvelope:
    """Tests para rotas públicas e o formato dos erros"""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'OK'
        assert data['database'] == 'connected'
        assert data['version'] == '5.1.0'
        assert 'timestamp' in data

    def test_api_probe(self, client):
        response = client.get('/api/test')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['data']['online'] is True
        assert data['data']['database'] == 'sqlite'

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get('/api/nao-existe')

        assert response.status_code == 404
        data = json.loads(response.data)
        assert data['success'] is False
        assert data['type'] == 'not_found'
        assert data['path'] == '/api/nao-existe'
        assert 'error_id' in data

    def test_protected_routes_require_token(self, client):
        for path in ('/api/dashboard', '/api/produtos', '/api/vendas', '/api/notifications',
                     '/api/financeiro', '/api/relatorios/vendas'):
            response = client.get(path)
            assert response.status_code == 401, path
            assert json.loads(response.data)['success'] is False

    def test_api_responses_are_not_cached(self, client):
        response = client.get('/health')

        assert response.headers['Cache-Control'] == 'no-cache, no-store, must-revalidate'


class TestProducts:
    """Tests para /api/produtos"""

    def test_list_products(self, client, auth_headers, sample_products):
        response = client.get('/api/produtos', headers=auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['totalItens'] == 2
        names = [p['name'] for p in data['data']]
        assert names == ['Detergente', 'Smartphone Android']
        assert data['data'][1]['categoria'] == 'Eletrônicos'

    def test_list_flags_low_stock_by_threshold(self, client, auth_headers, sample_products):
        phone, soap = sample_products
        soap.stock_quantity = 5
        db.session.commit()

        data = json.loads(client.get('/api/produtos', headers=auth_headers).data)

        assert data['alertas'] == 1
        assert data['itensBaixoEstoque'][0]['name'] == 'Detergente'

    def test_list_is_tenant_scoped(self, client, auth_headers, sample_products):
        db.session.add(Product(name='Outro Tenant', price=1.0, stock_quantity=1, empresa_id=2))
        db.session.commit()

        data = json.loads(client.get('/api/produtos', headers=auth_headers).data)

        assert 'Outro Tenant' not in [p['name'] for p in data['data']]

    def test_create_product_with_portuguese_fields(self, client, auth_headers, sample_products):
        response = client.post('/api/produtos', headers=auth_headers, json={
            'produto': 'Notebook i5', 'quantidade': 8, 'preco': 1899.90, 'custo': 1400,
        })

        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['name'] == 'Notebook i5'
        assert data['stock_quantity'] == 8
        # categoria inferida pelo nome
        assert data['category'] == 'Eletrônicos'
        assert data['category_id'] is not None

    def test_create_product_without_rule_match_uses_default_category(self, client, auth_headers, sample_products):
        response = client.post('/api/produtos', headers=auth_headers, json={'produto': 'Caneta Azul', 'quantidade': 10})

        assert response.status_code == 201
        assert json.loads(response.data)['data']['category'] == 'Geral'

    def test_create_product_missing_fields(self, client, auth_headers):
        response = client.post('/api/produtos', headers=auth_headers, json={'produto': 'Sem quantidade'})

        assert response.status_code == 400
        assert json.loads(response.data)['type'] == 'validation'

    def test_create_product_negative_quantity(self, client, auth_headers):
        response = client.post('/api/produtos', headers=auth_headers, json={'produto': 'X', 'quantidade': -1})

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'stock_quantity'

    def test_create_product_unknown_category_id(self, client, auth_headers):
        response = client.post('/api/produtos', headers=auth_headers,
                               json={'produto': 'X', 'quantidade': 1, 'categoria': 999})

        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Categoria não encontrada'

    def test_create_product_duplicate_sku(self, client, auth_headers, sample_products):
        response = client.post('/api/produtos', headers=auth_headers,
                               json={'produto': 'Cópia', 'quantidade': 1, 'sku': 'SP-AND001'})

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'sku'

    def test_update_product(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.put(f'/api/produtos/{phone.id}', headers=auth_headers, json={'preco': 799.90})

        assert response.status_code == 200
        assert json.loads(response.data)['data']['price'] == 799.90

    def test_update_missing_product(self, client, auth_headers):
        response = client.put('/api/produtos/999', headers=auth_headers, json={'preco': 1})

        assert response.status_code == 404

    def test_delete_is_soft(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.delete(f'/api/produtos/{phone.id}', headers=auth_headers)

        assert response.status_code == 200
        assert db.session.get(Product, phone.id).is_active is False
        listed = json.loads(client.get('/api/produtos', headers=auth_headers).data)
        assert listed['totalItens'] == 1


class TestSales:
    """Tests para /api/vendas"""

    def test_register_sale(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.post('/api/vendas', headers=auth_headers, json={
            'items': [{'product_id': phone.id, 'quantity': 2}],
            'payment_method': 'cartão',
        })

        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['sale_code'] == f"V{data['id']:04d}"
        assert data['total_amount'] == 1799.80
        assert data['items'][0]['total_price'] == 1799.80
        assert db.session.get(Product, phone.id).stock_quantity == 13

    def test_sale_locks_product_rows(self, client, auth_headers, sample_products, monkeypatch):
        """Produto é lido com SELECT ... FOR UPDATE antes da checagem de estoque"""
        phone, _ = sample_products
        locked = []
        original = Query.with_for_update

        def recording_lock(query, *args, **kwargs):
            locked.append(query.column_descriptions[0]['entity'])
            return original(query, *args, **kwargs)

        monkeypatch.setattr(Query, 'with_for_update', recording_lock)

        response = client.post('/api/vendas', headers=auth_headers,
                               json={'items': [{'product_id': phone.id, 'quantity': 1}]})

        assert response.status_code == 201
        assert locked == [Product]

    def test_sale_creates_notifications(self, client, auth_headers, sample_products):
        _, soap = sample_products

        client.post('/api/vendas', headers=auth_headers,
                    json={'items': [{'product_id': soap.id, 'quantity': 2}]})

        titles = {n.title for n in Notification.query.all()}
        assert '💰 Nova Venda Realizada' in titles
        assert '⚠️ Estoque Baixo' in titles

    def test_item_total_mismatch_is_rejected(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.post('/api/vendas', headers=auth_headers, json={
            'items': [{'product_id': phone.id, 'quantity': 2, 'unit_price': 10.0, 'total_price': 25.0}],
        })

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'total_price'
        assert Sale.query.count() == 0

    def test_sale_total_mismatch_is_rejected(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.post('/api/vendas', headers=auth_headers, json={
            'items': [{'product_id': phone.id, 'quantity': 1}],
            'total_amount': 1.00,
        })

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'total_amount'

    def test_insufficient_stock_counts_repeated_items(self, client, auth_headers, sample_products):
        _, soap = sample_products

        response = client.post('/api/vendas', headers=auth_headers, json={
            'items': [{'product_id': soap.id, 'quantity': 4}, {'product_id': soap.id, 'quantity': 3}],
        })

        assert response.status_code == 400
        assert db.session.get(Product, soap.id).stock_quantity == 6

    def test_sale_without_items(self, client, auth_headers):
        response = client.post('/api/vendas', headers=auth_headers, json={'items': []})

        assert response.status_code == 400

    def test_invalid_quantity(self, client, auth_headers, sample_products):
        phone, _ = sample_products

        response = client.post('/api/vendas', headers=auth_headers,
                               json={'items': [{'product_id': phone.id, 'quantity': 0}]})

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'quantity'

    def test_list_sales(self, client, auth_headers, sample_products):
        phone, _ = sample_products
        client.post('/api/vendas', headers=auth_headers, json={'items': [{'product_id': phone.id, 'quantity': 1}]})

        data = json.loads(client.get('/api/vendas', headers=auth_headers).data)

        assert data['total'] == 1
        assert data['receitaTotal'] == 899.90
        assert data['data'][0]['items_count'] == 1


class TestDashboard:
    """Tests para /api/dashboard"""

    def test_dashboard_totals(self, client, auth_headers, sample_products):
        phone, soap = sample_products
        client.post('/api/vendas', headers=auth_headers, json={'items': [{'product_id': soap.id, 'quantity': 2}]})
        client.post('/api/vendas', headers=auth_headers, json={'items': [{'product_id': phone.id, 'quantity': 1}]})

        response = client.get('/api/dashboard', headers=auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['totalVendas'] == 2
        assert data['receitaTotal'] == 907.70
        assert data['totalItensVendidos'] == 3
        assert data['totalItensEstoque'] == 2
        assert data['alertasEstoque'] == 1
        assert len(data['tendenciaVendas']) == 1


class TestCategories:
    def test_list_categories(self, client, auth_headers, sample_products):
        data = json.loads(client.get('/api/categorias', headers=auth_headers).data)

        assert {c['name'] for c in data['data']} == {'Eletrônicos', 'Limpeza', 'Geral'}


class TestNotifications:
    """Tests para /api/notifications"""

    def test_priority_ordering_and_unread_count(self, client, user, auth_headers):
        notification_service.create_notification(1, 'Baixa', 'm', priority='low')
        notification_service.create_notification(1, 'Alta', 'm', priority='high')
        notification_service.create_notification(1, 'Média', 'm', priority='medium', user_id=user.id)

        data = json.loads(client.get('/api/notifications', headers=auth_headers).data)

        assert [n['title'] for n in data['data']] == ['Alta', 'Média', 'Baixa']
        assert data['unread_count'] == 3

    def test_other_users_notifications_are_hidden(self, client, user, auth_headers):
        other = make_user('outro')
        notification_service.create_notification(1, 'Privada', 'm', user_id=other.id)
        notification_service.create_notification(2, 'Outro tenant', 'm')

        data = json.loads(client.get('/api/notifications', headers=auth_headers).data)

        assert data['data'] == []

    def test_mark_as_read(self, client, user, auth_headers):
        notification = notification_service.create_notification(1, 'Aviso', 'm')

        response = client.put(f'/api/notifications/{notification.id}/read', headers=auth_headers)

        assert response.status_code == 200
        assert json.loads(response.data)['data']['is_read'] is True

    def test_mark_missing_notification(self, client, auth_headers):
        response = client.put('/api/notifications/999/read', headers=auth_headers)

        assert response.status_code == 404

    def test_mark_all_as_read(self, client, user, auth_headers):
        for title in ('A', 'B'):
            notification_service.create_notification(1, title, 'm')

        response = client.put('/api/notifications/read-all', headers=auth_headers)

        assert json.loads(response.data)['data']['updatedCount'] == 2
        assert notification_service.get_unread_count(1, user.id) == 0

    def test_invalid_limit(self, client, auth_headers):
        response = client.get('/api/notifications?limit=500', headers=auth_headers)

        assert response.status_code == 400


class TestFinancial:
    """Tests para /api/financeiro"""

    def test_create_and_list_accounts(self, client, auth_headers):
        for payload in (
            {'description': 'Aluguel', 'amount': 1500, 'type': 'despesa', 'status': 'pago', 'due_date': '2026-10-05'},
            {'description': 'Cliente A', 'amount': 3000, 'type': 'receita', 'status': 'recebido'},
            {'description': 'Cliente B', 'amount': 500, 'type': 'receita'},
        ):
            assert client.post('/api/financeiro', headers=auth_headers, json=payload).status_code == 201

        data = json.loads(client.get('/api/financeiro', headers=auth_headers).data)

        assert data['total'] == 3
        assert data['resumo']['saldo_atual'] == 1500.0
        assert data['resumo']['saldo_previsto'] == 2000.0

    def test_invalid_type(self, client, auth_headers):
        response = client.post('/api/financeiro', headers=auth_headers,
                               json={'description': 'X', 'amount': 10, 'type': 'outro'})

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'type'

    def test_invalid_due_date(self, client, auth_headers):
        response = client.post('/api/financeiro', headers=auth_headers,
                               json={'description': 'X', 'amount': 10, 'type': 'receita', 'due_date': '05/10/2026'})

        assert response.status_code == 400
        assert json.loads(response.data)['field'] == 'due_date'


class TestReports:
    """Tests para /api/relatorios/<tipo>"""

    def test_sales_report_is_stored(self, client, auth_headers, sample_products):
        phone, _ = sample_products
        client.post('/api/vendas', headers=auth_headers, json={'items': [{'product_id': phone.id, 'quantity': 1}]})

        response = client.get('/api/relatorios/vendas?periodo=30', headers=auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['data']['estatisticas']['total_vendas_periodo'] == 1
        assert db.session.get(Report, data['report_id']).report_type == 'vendas'

    def test_stock_report(self, client, auth_headers, sample_products):
        data = json.loads(client.get('/api/relatorios/estoque', headers=auth_headers).data)

        assert data['data']['estatisticas']['total_produtos'] == 2

    def test_financial_report_month(self, client, auth_headers):
        db.session.add(FinancialAccount(description='Venda', amount=100.0, type='receita',
                                        status='recebido', due_date=date(2026, 3, 10)))
        db.session.commit()

        data = json.loads(client.get('/api/relatorios/financeiro?mes=3&ano=2026', headers=auth_headers).data)

        assert data['data']['periodo'] == '3/2026'
        assert data['data']['saldo_previsto']['receitas'] == 100.0

    def test_invalid_month(self, client, auth_headers):
        response = client.get('/api/relatorios/financeiro?mes=13', headers=auth_headers)

        assert response.status_code == 400

    def test_unknown_report(self, client, auth_headers):
        response = client.get('/api/relatorios/impostos', headers=auth_headers)

        assert response.status_code == 404

    def test_export_xlsx(self, client, auth_headers, sample_products):
        response = client.get('/api/relatorios/estoque/export?formato=xlsx', headers=auth_headers)

        assert response.status_code == 200
        assert response.mimetype == 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        assert response.data[:2] == b'PK'

    def test_export_pdf(self, client, auth_headers, sample_products):
        response = client.get('/api/relatorios/vendas/export?formato=pdf', headers=auth_headers)

        assert response.status_code == 200
        assert response.data.startswith(b'%PDF')

    def test_export_invalid_format(self, client, auth_headers):
        response = client.get('/api/relatorios/vendas/export?formato=doc', headers=auth_headers)

        assert response.status_code == 400


class TestUsers:
    """Tests para /api/users (somente administradores)"""

    def test_regular_user_is_forbidden(self, client, auth_headers):
        response = client.get('/api/users', headers=auth_headers)

        assert response.status_code == 403

    def test_admin_lists_tenant_users(self, client, admin_headers, user):
        make_user('outra_empresa', empresa_id=2)

        data = json.loads(client.get('/api/users', headers=admin_headers).data)

        usernames = {u['username'] for u in data['data']}
        assert usernames == {'gerente', 'operador'}

    def test_admin_updates_role(self, client, admin_headers, user):
        response = client.put(f'/api/users/{user.id}', headers=admin_headers, json={'role': 'manager'})

        assert response.status_code == 200
        assert json.loads(response.data)['data']['role'] == 'manager'

    def test_invalid_role(self, client, admin_headers, user):
        response = client.put(f'/api/users/{user.id}', headers=admin_headers, json={'role': 'root'})

        assert response.status_code == 400

    def test_admin_cannot_demote_self(self, client, admin_user, admin_headers):
        response = client.put(f'/api/users/{admin_user.id}', headers=admin_headers,
                              json={'role': UserRole.USER.value})

        assert response.status_code == 400
        assert json.loads(response.data)['type'] == 'business'


class TestDebug:
    def test_debug_tables(self, client, test_app):
        data = json.loads(client.get('/api/debug/tables').data)

        assert 'sale_code' in data['data']['sales']
