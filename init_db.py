#!/usr/bin/env python3
"""
Initialize the BizFlow database: base tables plus reference data.

Creates categories, products, sales, sale_items and users if they do not exist,
then inserts the reference categories, five demo products and the admin user.
Every insert ignores conflicts, so the script can run on every deploy.

Columns added later (products.category, sales.empresa_id, ...) belong to
migrate_schema.py, which runs right after this script.
"""
import os
import sys

from sqlalchemy import text

from auth_service import BCRYPT_ROUNDS, hash_password
from database import create_db_engine, primary_key_ddl

BASE_TABLES = {
    'categories': """
        CREATE TABLE IF NOT EXISTS categories (
            id {pk},
            name VARCHAR(100) NOT NULL UNIQUE,
            description TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'products': """
        CREATE TABLE IF NOT EXISTS products (
            id {pk},
            name VARCHAR(200) NOT NULL,
            description TEXT,
            price DECIMAL(10,2) NOT NULL,
            cost DECIMAL(10,2),
            stock_quantity INTEGER DEFAULT 0,
            category_id INTEGER REFERENCES categories(id),
            sku VARCHAR(100) UNIQUE,
            barcode VARCHAR(100),
            is_active BOOLEAN DEFAULT true,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'sales': """
        CREATE TABLE IF NOT EXISTS sales (
            id {pk},
            sale_code VARCHAR(50) UNIQUE,
            total_amount DECIMAL(10,2) NOT NULL,
            total_items INTEGER NOT NULL DEFAULT 1,
            payment_method VARCHAR(50) NOT NULL DEFAULT 'dinheiro',
            sale_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            status VARCHAR(20) DEFAULT 'completed',
            notes TEXT
        )
    """,
    'sale_items': """
        CREATE TABLE IF NOT EXISTS sale_items (
            id {pk},
            sale_id INTEGER REFERENCES sales(id) ON DELETE CASCADE,
            product_id INTEGER REFERENCES products(id),
            product_name VARCHAR(200) NOT NULL,
            quantity INTEGER NOT NULL,
            unit_price DECIMAL(10,2) NOT NULL,
            total_price DECIMAL(10,2) NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'users': """
        CREATE TABLE IF NOT EXISTS users (
            id {pk},
            username VARCHAR(50) NOT NULL UNIQUE,
            email VARCHAR(100) NOT NULL UNIQUE,
            password_hash VARCHAR(255) NOT NULL,
            full_name VARCHAR(100) NOT NULL,
            role VARCHAR(20) DEFAULT 'user',
            is_active BOOLEAN DEFAULT true,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
}

REFERENCE_CATEGORIES = [
    ('Geral', 'Produtos diversos'),
    ('Eletrônicos', 'Dispositivos eletrônicos'),
    ('Alimentação', 'Produtos alimentícios'),
    ('Limpeza', 'Produtos de limpeza'),
    ('Bebidas', 'Bebidas em geral'),
]

# name, description, price, cost, stock, category, sku
DEMO_PRODUCTS = [
    ('Smartphone Android', 'Smartphone Android 128GB', 899.90, 650.00, 15, 'Eletrônicos', 'SP-AND001'),
    ('Notebook i5', 'Notebook Core i5 8GB RAM', 1899.90, 1400.00, 8, 'Eletrônicos', 'NB-I5001'),
    ('Café Premium', 'Café em grãos 500g', 24.90, 15.00, 50, 'Alimentação', 'CF-PREM01'),
    ('Detergente', 'Detergente líquido 500ml', 3.90, 1.80, 100, 'Limpeza', 'DT-LIQ01'),
    ('Água Mineral', 'Água mineral 500ml', 2.50, 0.80, 200, 'Bebidas', 'AG-MIN01'),
]

ADMIN_USERNAME = 'admin'
ADMIN_EMAIL = 'admin@bizflow.com'


def create_base_table(conn, table):
    """CREATE TABLE IF NOT EXISTS for one base table, with the dialect's auto-increment key."""
    conn.execute(text(BASE_TABLES[table].format(pk=primary_key_ddl(conn))))


def insert_reference_data(conn, admin_password, bcrypt_rounds=BCRYPT_ROUNDS):
    for name, description in REFERENCE_CATEGORIES:
        conn.execute(text("""
            INSERT INTO categories (name, description) VALUES (:name, :description)
            ON CONFLICT DO NOTHING
        """), {'name': name, 'description': description})

    for name, description, price, cost, stock, category, sku in DEMO_PRODUCTS:
        conn.execute(text("""
            INSERT INTO products (name, description, price, cost, stock_quantity, category_id, sku)
            VALUES (:name, :description, :price, :cost, :stock,
                    (SELECT id FROM categories WHERE name = :category), :sku)
            ON CONFLICT DO NOTHING
        """), {'name': name, 'description': description, 'price': price, 'cost': cost,
               'stock': stock, 'category': category, 'sku': sku})

    # The hash is only computed when the admin is actually missing
    exists = conn.execute(
        text("SELECT 1 FROM users WHERE username = :username"), {'username': ADMIN_USERNAME}
    ).first()
    if exists is None:
        conn.execute(text("""
            INSERT INTO users (username, email, password_hash, full_name, role)
            VALUES (:username, :email, :password_hash, :full_name, 'admin')
            ON CONFLICT DO NOTHING
        """), {'username': ADMIN_USERNAME, 'email': ADMIN_EMAIL,
               'password_hash': hash_password(admin_password, rounds=bcrypt_rounds),
               'full_name': 'Administrador'})
        print(f"👤 Usuário {ADMIN_USERNAME} criado")
    else:
        print(f"✅ Usuário {ADMIN_USERNAME} já existe")


def bootstrap_schema(engine, admin_password=None, bcrypt_rounds=BCRYPT_ROUNDS):
    """
    Create the base schema and reference data in a single transaction.

    Safe to run repeatedly; raises on any database error after rolling back.
    """
    admin_password = admin_password or os.environ.get('ADMIN_PASSWORD', 'admin123')

    with engine.connect() as conn:
        trans = conn.begin()
        try:
            print("🗄️  Criando tabelas base...")
            for table in BASE_TABLES:
                create_base_table(conn, table)
            print(f"✅ Tabelas verificadas: {', '.join(BASE_TABLES)}")

            print("🎯 Inserindo dados de referência...")
            insert_reference_data(conn, admin_password, bcrypt_rounds=bcrypt_rounds)

            trans.commit()
        except Exception:
            trans.rollback()
            raise


def main():
    print("🔄 Conectando ao banco de dados...")
    engine = create_db_engine()
    try:
        bootstrap_schema(engine)
    except Exception as e:
        print(f"❌ Erro ao inicializar banco de dados: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.dispose()

    print("\n✅ Banco de dados inicializado com sucesso!")
    print(f"📊 Tabelas: {', '.join(BASE_TABLES)}")
    print(f"📦 Referência: {len(REFERENCE_CATEGORIES)} categorias, {len(DEMO_PRODUCTS)} produtos exemplo, usuário {ADMIN_USERNAME}")


if __name__ == '__main__':
    main()
