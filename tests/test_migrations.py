"""
Tests para init_db.py e migrate_schema.py contra SQLite em arquivo

Os scripts rodam de verdade: o engine de database.create_db_engine habilita
DDL transacional no SQLite, então o rollback também desfaz ALTER/CREATE.
"""
import pytest
from sqlalchemy import text

import migrate_schema
from auth_service import check_password
from database import create_db_engine
import init_db
from init_db import bootstrap_schema, REFERENCE_CATEGORIES, DEMO_PRODUCTS, ADMIN_USERNAME


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'bizflow.sqlite3'}")
    yield engine
    engine.dispose()


@pytest.fixture
def bootstrapped(engine):
    bootstrap_schema(engine, admin_password='admin123', bcrypt_rounds=4)
    return engine


def catalog(engine):
    """Snapshot do catálogo: tabelas, índices e o DDL de cada um"""
    with engine.connect() as conn:
        return conn.execute(text(
            "SELECT type, name, tbl_name, sql FROM sqlite_master ORDER BY type, name"
        )).fetchall()


def scalar(engine, sql, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).scalar()


def rows(engine, sql, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).fetchall()


def execute(engine, sql, **params):
    with engine.begin() as conn:
        conn.execute(text(sql), params)


class TestBootstrap:
    """Tests para init_db.bootstrap_schema"""

    def test_creates_reference_data(self, bootstrapped):
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM categories") == len(REFERENCE_CATEGORIES)
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM products") == len(DEMO_PRODUCTS)
        assert scalar(bootstrapped, "SELECT role FROM users WHERE username = :u", u=ADMIN_USERNAME) == 'admin'

    def test_admin_password_is_hashed(self, bootstrapped):
        password_hash = scalar(bootstrapped, "SELECT password_hash FROM users WHERE username = :u", u=ADMIN_USERNAME)

        assert password_hash != 'admin123'
        assert check_password('admin123', password_hash)

    def test_products_reference_their_category(self, bootstrapped):
        category = scalar(bootstrapped, """
            SELECT c.name FROM products p JOIN categories c ON c.id = p.category_id
            WHERE p.sku = 'AG-MIN01'
        """)
        assert category == 'Bebidas'

    def test_bootstrap_is_idempotent(self, bootstrapped):
        before = catalog(bootstrapped)

        bootstrap_schema(bootstrapped, admin_password='outra-senha', bcrypt_rounds=4)

        assert catalog(bootstrapped) == before
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM categories") == len(REFERENCE_CATEGORIES)
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM products") == len(DEMO_PRODUCTS)
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM users") == 1
        # senha do admin existente não é trocada
        password_hash = scalar(bootstrapped, "SELECT password_hash FROM users WHERE username = :u", u=ADMIN_USERNAME)
        assert check_password('admin123', password_hash)


class TestMigration:
    """Tests para migrate_schema.run_migration"""

    def test_migration_brings_schema_to_current_shape(self, bootstrapped):
        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        results = migrate_schema.verify_migration(bootstrapped)

        assert [r.status for r in results] == ['OK'] * len(migrate_schema.VERIFY_CHECKS)
        with bootstrapped.connect() as conn:
            assert migrate_schema.has_column(conn, 'sales', 'empresa_id')
            assert migrate_schema.has_column(conn, 'users', 'empresa_id')
            assert migrate_schema.has_table(conn, 'reports')
            assert migrate_schema.has_unique_on(conn, 'sales', 'sale_code')

    def test_migration_is_idempotent(self, bootstrapped):
        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')
        first_catalog = catalog(bootstrapped)
        counts = {t: scalar(bootstrapped, f"SELECT COUNT(*) FROM {t}") for t in ('products', 'sales', 'notifications')}

        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        assert catalog(bootstrapped) == first_catalog
        for table, count in counts.items():
            assert scalar(bootstrapped, f"SELECT COUNT(*) FROM {table}") == count

    def test_category_backfill(self, bootstrapped):
        execute(bootstrapped, "INSERT INTO products (name, price) VALUES ('Caneta Azul', 2.0)")

        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        categories = dict(rows(bootstrapped, "SELECT name, category FROM products"))
        assert categories['Smartphone Android'] == 'Eletrônicos'
        assert categories['Notebook i5'] == 'Eletrônicos'
        assert categories['Café Premium'] == 'Alimentação'
        assert categories['Detergente'] == 'Limpeza'
        assert categories['Água Mineral'] == 'Bebidas'
        assert categories['Caneta Azul'] == 'Geral'

    def test_category_backfill_keeps_explicit_categories(self, bootstrapped):
        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')
        execute(bootstrapped, "UPDATE products SET category = 'Promoção' WHERE name = 'Notebook i5'")

        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        assert scalar(bootstrapped, "SELECT category FROM products WHERE name = 'Notebook i5'") == 'Promoção'

    def test_sale_code_backfill_keeps_existing_codes(self, bootstrapped):
        execute(bootstrapped, "INSERT INTO sales (sale_code, total_amount) VALUES ('PDV-100', 10.0)")
        execute(bootstrapped, "INSERT INTO sales (total_amount) VALUES (20.0)")
        execute(bootstrapped, "INSERT INTO sales (total_amount) VALUES (30.0)")

        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        codes = rows(bootstrapped, "SELECT id, sale_code FROM sales ORDER BY id")
        assert codes[0][1] == 'PDV-100'
        for sale_id, code in codes[1:]:
            assert code == f"V{sale_id:04d}"
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM sales") == 3

    def test_legacy_sales_without_sale_code_column(self, engine):
        execute(engine, """
            CREATE TABLE products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name VARCHAR(200) NOT NULL,
                description TEXT,
                price DECIMAL(10,2) NOT NULL,
                stock_quantity INTEGER DEFAULT 0
            )
        """)
        execute(engine, """
            CREATE TABLE sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                total_amount DECIMAL(10,2) NOT NULL,
                sale_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        execute(engine, "INSERT INTO sales (total_amount) VALUES (15.0)")
        execute(engine, "INSERT INTO sales (total_amount) VALUES (25.0)")

        migrate_schema.run_migration(engine, seed_failure_policy='propagate')

        assert [r[0] for r in rows(engine, "SELECT sale_code FROM sales ORDER BY id")] == ['V0001', 'V0002']
        assert scalar(engine, "SELECT payment_method FROM sales WHERE id = 1") == 'dinheiro'
        assert scalar(engine, "SELECT COUNT(*) FROM users") == 0

    def test_sale_code_collision_aborts_migration(self, bootstrapped):
        execute(bootstrapped, "INSERT INTO sales (sale_code, total_amount) VALUES ('V0002', 10.0)")
        execute(bootstrapped, "INSERT INTO sales (total_amount) VALUES (20.0)")
        before = catalog(bootstrapped)

        with pytest.raises(migrate_schema.MigrationError):
            migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        assert catalog(bootstrapped) == before
        assert scalar(bootstrapped, "SELECT sale_code FROM sales WHERE id = 2") is None

    def test_missing_base_tables(self, engine):
        with pytest.raises(migrate_schema.MigrationError):
            migrate_schema.run_migration(engine, seed_failure_policy='ignore')


class TestMigrationRollback:
    """Uma falha no meio da migração deixa o catálogo idêntico ao de antes"""

    def test_failed_step_restores_catalog(self, bootstrapped, monkeypatch):
        before = catalog(bootstrapped)
        categories_before = rows(bootstrapped, "SELECT id, name FROM products ORDER BY id")

        def fail(conn):
            raise RuntimeError("falha forçada de DDL")

        monkeypatch.setattr(migrate_schema, 'create_new_tables', fail)

        with pytest.raises(RuntimeError):
            migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        assert catalog(bootstrapped) == before
        assert rows(bootstrapped, "SELECT id, name FROM products ORDER BY id") == categories_before
        with bootstrapped.connect() as conn:
            assert not migrate_schema.has_column(conn, 'products', 'category')
            assert not migrate_schema.has_table(conn, 'financial_accounts')


class TestSeedFailurePolicy:
    """Tests para SEED_FAILURE_POLICY"""

    @pytest.fixture
    def failing_seed(self, monkeypatch):
        def fail(conn):
            conn.execute(text("INSERT INTO notifications (title, message) VALUES ('parcial', 'x')"))
            raise RuntimeError("falha forçada no seed")

        monkeypatch.setattr(migrate_schema, '_seed_tables', fail)

    def test_ignore_keeps_schema_changes(self, bootstrapped, failing_seed):
        migrate_schema.run_migration(bootstrapped, seed_failure_policy='ignore')

        with bootstrapped.connect() as conn:
            assert migrate_schema.has_table(conn, 'notifications')
        # o savepoint desfaz a inserção parcial
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM notifications") == 0

    def test_propagate_rolls_back_everything(self, bootstrapped, failing_seed):
        before = catalog(bootstrapped)

        with pytest.raises(RuntimeError):
            migrate_schema.run_migration(bootstrapped, seed_failure_policy='propagate')

        assert catalog(bootstrapped) == before

    def test_policy_from_environment(self, monkeypatch):
        monkeypatch.setenv('SEED_FAILURE_POLICY', 'Propagate')
        assert migrate_schema.get_seed_failure_policy() == 'propagate'

        monkeypatch.setenv('SEED_FAILURE_POLICY', 'talvez')
        with pytest.raises(migrate_schema.MigrationError):
            migrate_schema.get_seed_failure_policy()

    def test_seed_inserts_sample_rows_with_codes(self, bootstrapped):
        migrate_schema.run_migration(bootstrapped, seed_failure_policy='propagate')

        assert scalar(bootstrapped, "SELECT COUNT(*) FROM sales") == len(migrate_schema.SAMPLE_SALES)
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM sales WHERE sale_code IS NULL") == 0
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM notifications") == len(migrate_schema.SAMPLE_NOTIFICATIONS)
        # produtos já existiam: o seed não duplica
        assert scalar(bootstrapped, "SELECT COUNT(*) FROM products") == len(DEMO_PRODUCTS)


class TestMigrationCli:
    """Tests para migrate_schema.main"""

    def test_main_success(self, bootstrapped, tmp_path, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', f"sqlite:///{tmp_path / 'bizflow.sqlite3'}")
        monkeypatch.setenv('SEED_FAILURE_POLICY', 'ignore')

        migrate_schema.main()

        assert scalar(bootstrapped, "SELECT COUNT(*) FROM notifications") == len(migrate_schema.SAMPLE_NOTIFICATIONS)

    def test_main_exits_1_on_failure(self, tmp_path, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', f"sqlite:///{tmp_path / 'vazio.sqlite3'}")
        monkeypatch.setenv('SEED_FAILURE_POLICY', 'ignore')

        with pytest.raises(SystemExit) as excinfo:
            migrate_schema.main()

        assert excinfo.value.code == 1


class TestBootstrapCli:
    """Tests para init_db.main"""

    def test_main_success(self, tmp_path, monkeypatch):
        path = tmp_path / 'novo.sqlite3'
        monkeypatch.setenv('DATABASE_URL', f"sqlite:///{path}")

        init_db.main()

        engine = create_db_engine(f"sqlite:///{path}")
        try:
            assert scalar(engine, "SELECT COUNT(*) FROM categories") == len(REFERENCE_CATEGORIES)
            assert scalar(engine, "SELECT COUNT(*) FROM users WHERE username = :u", u=ADMIN_USERNAME) == 1
        finally:
            engine.dispose()

    def test_main_exits_1_on_failure(self, tmp_path, monkeypatch, capsys):
        # SQLite não cria diretórios: o arquivo não pode ser aberto
        monkeypatch.setenv('DATABASE_URL', f"sqlite:///{tmp_path / 'nao-existe' / 'bizflow.sqlite3'}")

        with pytest.raises(SystemExit) as excinfo:
            init_db.main()

        assert excinfo.value.code == 1
        assert 'Erro ao inicializar banco de dados' in capsys.readouterr().err
