"""
Fixtures compartilhadas: aplicação com SQLite em memória, cliente de teste e usuários autenticados
"""
import os

# Configure environment for testing (antes de importar main)
os.environ['SESSION_SECRET'] = 'test_secret_key_for_testing_only'
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.setdefault('ENVIRONMENT', 'development')

import pytest  # noqa: E402

from main import app  # noqa: E402
from models import db, User, UserRole, Category, Product  # noqa: E402
from auth_service import hash_password, create_session  # noqa: E402

TEST_PASSWORD = 'password123'


@pytest.fixture
def test_app():
    """Aplicação em modo de testing com schema limpo a cada teste"""
    app.config['TESTING'] = True

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(test_app):
    return test_app.test_client()


def make_user(username, role=UserRole.USER, empresa_id=1, is_active=True):
    user = User(
        username=username,
        email=f'{username}@test.com',
        full_name=username.capitalize(),
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role.value,
        empresa_id=empresa_id,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(test_app):
    return make_user('operador')


@pytest.fixture
def admin_user(test_app):
    return make_user('gerente', role=UserRole.ADMIN)


@pytest.fixture
def auth_headers(user):
    session = create_session(user)
    return {'Authorization': f'Bearer {session.session_token}'}


@pytest.fixture
def admin_headers(admin_user):
    session = create_session(admin_user)
    return {'Authorization': f'Bearer {session.session_token}'}


@pytest.fixture
def sample_products(test_app):
    """Categorias de referência e dois produtos do tenant 1"""
    eletronicos = Category(name='Eletrônicos', description='Dispositivos eletrônicos')
    limpeza = Category(name='Limpeza', description='Produtos de limpeza')
    db.session.add_all([eletronicos, limpeza, Category(name='Geral', description='Produtos diversos')])
    db.session.flush()

    phone = Product(name='Smartphone Android', price=899.90, cost=650.00, stock_quantity=15,
                    min_stock=5, category='Eletrônicos', category_id=eletronicos.id, sku='SP-AND001')
    soap = Product(name='Detergente', price=3.90, cost=1.80, stock_quantity=6,
                   min_stock=5, category='Limpeza', category_id=limpeza.id, sku='DT-LIQ01')
    db.session.add_all([phone, soap])
    db.session.commit()
    return phone, soap
