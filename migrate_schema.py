#!/usr/bin/env python3
"""
Incremental schema migration for BizFlow.

Brings a database created by init_db.py (or by an earlier migration) up to the
current shape without touching existing rows:
1. Adds missing columns to products, sales, financial_accounts and users
2. Backfills products.category from the product name
3. Backfills sales.sale_code as "V" + zero-padded id
4. Creates notifications, user_sessions, sale_items, reports and their indexes
5. Seeds demo rows into empty tables (inside a savepoint)

Steps 1-5 share one transaction: any failure rolls all of them back. Seeding
failures follow SEED_FAILURE_POLICY (ignore | propagate).

Assumes a single migrator at a time: column checks and ALTERs are not atomic.
"""
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import NoSuchTableError

from database import create_db_engine, primary_key_ddl
from init_db import create_base_table
from utils import DEFAULT_CATEGORY, categorize_product_name, format_sale_code

logger = logging.getLogger(__name__)

SEED_POLICIES = ('ignore', 'propagate')


class MigrationError(Exception):
    """A migration rule was violated; the whole migration is rolled back."""


@dataclass
class ColumnSpec:
    name: str
    type: str
    default: Optional[str] = None

    @property
    def non_constant_default(self):
        return self.default is not None and self.default.upper() == 'CURRENT_TIMESTAMP'


TIMESTAMP_COLUMNS = [
    ColumnSpec('created_at', 'TIMESTAMP', 'CURRENT_TIMESTAMP'),
    ColumnSpec('updated_at', 'TIMESTAMP', 'CURRENT_TIMESTAMP'),
]

COLUMNS = {
    'products': [
        ColumnSpec('category', 'VARCHAR(100)', f"'{DEFAULT_CATEGORY}'"),
        ColumnSpec('min_stock', 'INTEGER', '5'),
        ColumnSpec('is_active', 'BOOLEAN', 'true'),
        ColumnSpec('empresa_id', 'INTEGER', '1'),
    ] + TIMESTAMP_COLUMNS,
    'sales': [
        ColumnSpec('sale_code', 'VARCHAR(50)'),
        ColumnSpec('total_items', 'INTEGER', '1'),
        ColumnSpec('payment_method', 'VARCHAR(50)', "'dinheiro'"),
        ColumnSpec('status', 'VARCHAR(20)', "'completed'"),
        ColumnSpec('empresa_id', 'INTEGER', '1'),
    ],
    'financial_accounts': [
        ColumnSpec('empresa_id', 'INTEGER', '1'),
        ColumnSpec('due_date', 'DATE'),
        ColumnSpec('status', 'VARCHAR(50)', "'pendente'"),
    ] + TIMESTAMP_COLUMNS,
    'users': [
        ColumnSpec('empresa_id', 'INTEGER', '1'),
    ],
}

NEW_TABLES = {
    'notifications': """
        CREATE TABLE IF NOT EXISTS notifications (
            id {pk},
            empresa_id INTEGER DEFAULT 1,
            user_id INTEGER REFERENCES users(id),
            title VARCHAR(200) NOT NULL,
            message TEXT NOT NULL,
            type VARCHAR(50) DEFAULT 'info',
            priority VARCHAR(20) DEFAULT 'medium',
            metadata {json},
            is_read BOOLEAN DEFAULT false,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'user_sessions': """
        CREATE TABLE IF NOT EXISTS user_sessions (
            id {pk},
            user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            session_token VARCHAR(255) UNIQUE NOT NULL,
            expires_at TIMESTAMP NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'sale_items': None,  # same DDL as init_db.py
    'reports': """
        CREATE TABLE IF NOT EXISTS reports (
            id {pk},
            empresa_id INTEGER DEFAULT 1,
            report_type VARCHAR(100) NOT NULL,
            title VARCHAR(200) NOT NULL,
            data {json} NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
}

FINANCIAL_ACCOUNTS_DDL = """
    CREATE TABLE IF NOT EXISTS financial_accounts (
        id {pk},
        description VARCHAR(200) NOT NULL,
        amount DECIMAL(10,2) NOT NULL,
        type VARCHAR(20) NOT NULL
    )
"""

INDEXES = [
    ('idx_products_category', 'products', 'category'),
    ('idx_products_active', 'products', 'is_active'),
    ('idx_sales_date', 'sales', 'sale_date'),
    ('idx_sales_empresa', 'sales', 'empresa_id'),
    ('idx_notifications_user', 'notifications', 'user_id'),
    ('idx_notifications_read', 'notifications', 'is_read'),
    ('idx_sessions_token', 'user_sessions', 'session_token'),
    ('idx_sessions_expires', 'user_sessions', 'expires_at'),
]

SALE_CODE_UNIQUE_INDEX = 'uq_sales_sale_code'

VERIFY_CHECKS = [
    ('products', 'category'),
    ('products', 'min_stock'),
    ('sales', 'sale_code'),
    ('sales', 'payment_method'),
    ('notifications', 'title'),
    ('user_sessions', 'session_token'),
]

SAMPLE_PRODUCTS = [
    ('Smartphone Android', 'Smartphone Android 128GB', 899.90, 15, 5, 'Eletrônicos'),
    ('Notebook i5', 'Notebook Core i5 8GB RAM', 1899.90, 8, 3, 'Eletrônicos'),
    ('Café Premium', 'Café em grãos 500g', 24.90, 50, 10, 'Alimentação'),
    ('Detergente', 'Detergente líquido 500ml', 3.90, 100, 20, 'Limpeza'),
    ('Água Mineral', 'Água mineral 500ml', 2.50, 200, 50, 'Bebidas'),
]

# total_amount, total_items, payment_method
SAMPLE_SALES = [
    (899.90, 1, 'cartão'),
    (1899.90, 1, 'dinheiro'),
    (52.80, 3, 'cartão'),
    (7.80, 2, 'pix'),
]

SAMPLE_NOTIFICATIONS = [
    ('Sistema Atualizado', 'Banco de dados atualizado para a versão 5', 'success', 'high'),
    ('Bem-vindo', 'Sistema BizFlow está pronto para uso', 'info', 'medium'),
]


@dataclass
class CheckResult:
    table: str
    column: str
    present: bool

    @property
    def status(self):
        return 'OK' if self.present else 'FALTANDO'


def get_seed_failure_policy():
    policy = os.environ.get('SEED_FAILURE_POLICY', 'ignore').strip().lower()
    if policy not in SEED_POLICIES:
        raise MigrationError(f"SEED_FAILURE_POLICY inválida: {policy!r} (use ignore ou propagate)")
    return policy


def _json_type(conn):
    return 'JSONB' if conn.dialect.name == 'postgresql' else 'JSON'


def has_table(conn, table):
    return inspect(conn).has_table(table)


def has_column(conn, table, column):
    return any(c['name'] == column for c in inspect(conn).get_columns(table))


def has_unique_on(conn, table, column):
    """True if a unique constraint or unique index covers exactly this column."""
    insp = inspect(conn)
    for uc in insp.get_unique_constraints(table):
        if uc['column_names'] == [column]:
            return True
    for ix in insp.get_indexes(table):
        if ix.get('unique') and ix['column_names'] == [column]:
            return True
    return False


def add_column_if_not_exists(conn, table, column):
    """
    ALTER TABLE ... ADD COLUMN when the column is missing. Returns True if added.

    SQLite refuses non-constant defaults on ADD COLUMN; there the column is
    added without a default and existing rows are stamped right after.
    """
    if has_column(conn, table, column.name):
        print(f"ℹ️  Coluna {column.name} já existe na tabela {table}")
        return False

    ddl = f"ALTER TABLE {table} ADD COLUMN {column.name} {column.type}"
    stamp_rows = column.non_constant_default and conn.dialect.name == 'sqlite'
    if column.default is not None and not stamp_rows:
        ddl += f" DEFAULT {column.default}"

    conn.execute(text(ddl))
    if stamp_rows:
        conn.execute(text(f"UPDATE {table} SET {column.name} = {column.default} WHERE {column.name} IS NULL"))

    print(f"✅ Coluna {column.name} adicionada à tabela {table}")
    return True


def add_missing_columns(conn):
    for table in ('products', 'sales'):
        if not has_table(conn, table):
            raise MigrationError(f"Tabela {table} não existe; execute init_db.py antes da migração")

    if not has_table(conn, 'financial_accounts'):
        print("🔧 Criando tabela financial_accounts...")
        conn.execute(text(FINANCIAL_ACCOUNTS_DDL.format(pk=primary_key_ddl(conn))))

    if not has_table(conn, 'users'):
        print("🔧 Criando tabela users...")
        create_base_table(conn, 'users')

    for table, columns in COLUMNS.items():
        for column in columns:
            add_column_if_not_exists(conn, table, column)

    if not has_unique_on(conn, 'sales', 'sale_code'):
        conn.execute(text(
            f"CREATE UNIQUE INDEX IF NOT EXISTS {SALE_CODE_UNIQUE_INDEX} ON sales (sale_code)"
        ))
        print("✅ Índice único de sale_code criado")


def backfill_product_categories(conn):
    """
    Reassign category by name keywords where it is NULL or the default.
    Rows that match no rule keep their current value. Returns rows updated.
    """
    rows = conn.execute(text(
        "SELECT id, name, category FROM products WHERE category IS NULL OR category = :default"
    ), {'default': DEFAULT_CATEGORY}).fetchall()

    updated = 0
    for product_id, name, current in rows:
        category = categorize_product_name(name)
        if category is None or category == current:
            continue
        conn.execute(text("UPDATE products SET category = :category WHERE id = :id"),
                     {'category': category, 'id': product_id})
        updated += 1

    print(f"✅ Categorias atualizadas: {updated} produto(s)")
    return updated


def backfill_sale_codes(conn):
    """Assign "V" + zero-padded id to sales without a code. Returns rows updated."""
    pending = conn.execute(text("SELECT id FROM sales WHERE sale_code IS NULL ORDER BY id")).fetchall()
    if not pending:
        print("✅ Todas as vendas já possuem sale_code")
        return 0

    taken = {row[0] for row in conn.execute(text("SELECT sale_code FROM sales WHERE sale_code IS NOT NULL"))}
    for (sale_id,) in pending:
        code = format_sale_code(sale_id)
        if code in taken:
            raise MigrationError(f"sale_code {code} já pertence a outra venda; venda {sale_id} ficaria duplicada")
        conn.execute(text("UPDATE sales SET sale_code = :code WHERE id = :id"), {'code': code, 'id': sale_id})
        taken.add(code)

    print(f"✅ sale_code gerado para {len(pending)} venda(s)")
    return len(pending)


def create_new_tables(conn):
    pk = primary_key_ddl(conn)
    json_type = _json_type(conn)
    for table, ddl in NEW_TABLES.items():
        if ddl is None:
            create_base_table(conn, table)
        else:
            conn.execute(text(ddl.format(pk=pk, json=json_type)))
    print(f"✅ Tabelas verificadas: {', '.join(NEW_TABLES)}")


def create_indexes(conn):
    for name, table, column in INDEXES:
        conn.execute(text(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({column})"))
    print(f"✅ {len(INDEXES)} índices verificados")


def _count(conn, table):
    return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


def _seed_tables(conn):
    if _count(conn, 'products') == 0:
        for name, description, price, stock, min_stock, category in SAMPLE_PRODUCTS:
            conn.execute(text("""
                INSERT INTO products (name, description, price, stock_quantity, min_stock, category, is_active)
                VALUES (:name, :description, :price, :stock, :min_stock, :category, true)
            """), {'name': name, 'description': description, 'price': price, 'stock': stock,
                   'min_stock': min_stock, 'category': category})
        print(f"📦 {len(SAMPLE_PRODUCTS)} produtos de exemplo inseridos")

    if _count(conn, 'sales') == 0:
        for total_amount, total_items, payment_method in SAMPLE_SALES:
            conn.execute(text("""
                INSERT INTO sales (total_amount, total_items, payment_method, empresa_id)
                VALUES (:total_amount, :total_items, :payment_method, 1)
            """), {'total_amount': total_amount, 'total_items': total_items, 'payment_method': payment_method})
        backfill_sale_codes(conn)
        print(f"💰 {len(SAMPLE_SALES)} vendas de exemplo inseridas")

    if _count(conn, 'notifications') == 0:
        for title, message, type_, priority in SAMPLE_NOTIFICATIONS:
            conn.execute(text("""
                INSERT INTO notifications (empresa_id, title, message, type, priority)
                VALUES (1, :title, :message, :type, :priority)
            """), {'title': title, 'message': message, 'type': type_, 'priority': priority})
        print(f"🔔 {len(SAMPLE_NOTIFICATIONS)} notificações de exemplo inseridas")


def insert_sample_data(conn, policy='ignore'):
    """
    Seed empty tables inside a savepoint. Returns True when the seed was kept.

    With policy "ignore" a failure only rolls back the savepoint; with
    "propagate" it is re-raised and the caller rolls back everything.
    """
    savepoint = conn.begin_nested()
    try:
        _seed_tables(conn)
        savepoint.commit()
        return True
    except Exception:
        savepoint.rollback()
        if policy == 'propagate':
            raise
        logger.exception("Falha ao inserir dados de exemplo; migração segue sem eles")
        print("⚠️  Dados de exemplo não inseridos (SEED_FAILURE_POLICY=ignore)")
        return False


def run_migration(engine, seed_failure_policy=None):
    """Run every migration step in one transaction; re-raise after rollback on failure."""
    policy = seed_failure_policy or get_seed_failure_policy()
    if policy not in SEED_POLICIES:
        raise MigrationError(f"SEED_FAILURE_POLICY inválida: {policy!r} (use ignore ou propagate)")

    with engine.connect() as conn:
        trans = conn.begin()
        try:
            print("🔍 Verificando e adicionando colunas...")
            add_missing_columns(conn)

            print("🏷️  Atualizando categorias de produtos...")
            backfill_product_categories(conn)

            print("🧾 Gerando códigos de venda...")
            backfill_sale_codes(conn)

            print("📈 Criando novas tabelas e índices...")
            create_new_tables(conn)
            create_indexes(conn)

            print("🎯 Inserindo dados de exemplo...")
            insert_sample_data(conn, policy)

            trans.commit()
            print("✅ Migração do banco concluída com sucesso!")
        except Exception as e:
            trans.rollback()
            print(f"❌ Falha na migração: {e}")
            print("🔄 Todas as alterações foram desfeitas")
            raise


def verify_migration(engine) -> List[CheckResult]:
    """Re-read each expected (table, column) pair and report it. Advisory only."""
    print("\n🔍 Verificando migração...")
    results = []
    with engine.connect() as conn:
        for table, column in VERIFY_CHECKS:
            try:
                present = has_column(conn, table, column)
            except NoSuchTableError:
                present = False
            result = CheckResult(table, column, present)
            icon = '✅' if result.present else '❌'
            print(f"{icon} {table}.{column} - {result.status}")
            results.append(result)
    return results


def main():
    print("🚀 Iniciando migração do banco de dados BizFlow")
    print("=" * 60)

    engine = create_db_engine()
    try:
        run_migration(engine)
        verify_migration(engine)
    except Exception as e:
        print(f"\n❌ Migração falhou: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.dispose()

    print("""
╔══════════════════════════════════════════════════╗
║           ✅ MIGRAÇÃO CONCLUÍDA                  ║
╠══════════════════════════════════════════════════╣
║ 🗃️  Colunas faltantes adicionadas                ║
║ 📈 Tabelas novas criadas                         ║
║ 🎯 Dados de exemplo inseridos                    ║
║ 🔍 Verificação de integridade concluída          ║
╚══════════════════════════════════════════════════╝
    """)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(levelname)s [%(name)s] - %(message)s')
    main()
