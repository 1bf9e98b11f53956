from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)
from datetime import datetime, date, timezone
from sqlalchemy import String, Integer, Float, DateTime, Date, Boolean, Text, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum


def utcnow():
    """UTC naive, como o banco armazena os timestamps"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(enum.Enum):
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


class FinancialType(enum.Enum):
    RECEITA = "receita"
    DESPESA = "despesa"


class User(db.Model):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan",
                            passive_deletes=True)
    notifications = relationship("Notification", back_populates="user")

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN.value

    def to_dict(self):
        """Usuário sem o hash da senha"""
        return {
            'id': self.id,
            'empresa_id': self.empresa_id,
            'username': self.username,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class UserSession(db.Model):
    """Token de sessão: única credencial aceita pela API, com expiração absoluta"""
    __tablename__ = 'user_sessions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id', ondelete='CASCADE'))
    session_token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="sessions")

    def is_expired(self, now=None):
        return self.expires_at <= (now or utcnow())


class Category(db.Model):
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Relationships
    products = relationship("Product", back_populates="category_ref")

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'description': self.description}


class Product(db.Model):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    cost: Mapped[float] = mapped_column(Float, nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey('categories.id'), nullable=True)
    category: Mapped[str] = mapped_column(String(100), default='Geral', index=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=True)
    barcode: Mapped[str] = mapped_column(String(100), nullable=True)
    min_stock: Mapped[int] = mapped_column(Integer, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    category_ref = relationship("Category", back_populates="products")
    sale_items = relationship("SaleItem", back_populates="product")

    @property
    def is_low_stock(self):
        return (self.stock_quantity or 0) <= (self.min_stock or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'empresa_id': self.empresa_id,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'cost': self.cost,
            'stock_quantity': self.stock_quantity,
            'category_id': self.category_id,
            'category': self.category,
            'categoria': self.category_ref.name if self.category_ref else self.category,
            'sku': self.sku,
            'barcode': self.barcode,
            'min_stock': self.min_stock,
            'is_active': self.is_active,
        }


class Sale(db.Model):
    __tablename__ = 'sales'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1, index=True)
    # "V" + id com 4 dígitos, atribuído depois do flush
    sale_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=True)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default='dinheiro')
    sale_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    status: Mapped[str] = mapped_column(String(20), default='completed')
    notes: Mapped[str] = mapped_column(Text, nullable=True)

    # Relationships
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan",
                         passive_deletes=True)

    def to_dict(self, include_items=False):
        data = {
            'id': self.id,
            'empresa_id': self.empresa_id,
            'sale_code': self.sale_code,
            'total_amount': self.total_amount,
            'total_items': self.total_items,
            'payment_method': self.payment_method,
            'sale_date': self.sale_date.isoformat() if self.sale_date else None,
            'status': self.status,
            'notes': self.notes,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
            data['items_count'] = len(self.items)
        return data


class SaleItem(db.Model):
    __tablename__ = 'sale_items'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(Integer, ForeignKey('sales.id', ondelete='CASCADE'))
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey('products.id'), nullable=True)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)  # quantity * unit_price, calculado pela API
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Relationships
    sale = relationship("Sale", back_populates="items")
    product = relationship("Product", back_populates="sale_items")

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
        }


class FinancialAccount(db.Model):
    """Contas a pagar/receber"""
    __tablename__ = 'financial_accounts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # receita, despesa
    due_date: Mapped[date] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(50), default='pendente')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'empresa_id': self.empresa_id,
            'description': self.description,
            'amount': self.amount,
            'type': self.type,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'status': self.status,
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), default='info')
    priority: Mapped[str] = mapped_column(String(20), default='medium')
    # "metadata" é reservado pelo declarative
    extra_data: Mapped[dict] = mapped_column('metadata', JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="notifications")

    def to_dict(self):
        return {
            'id': self.id,
            'empresa_id': self.empresa_id,
            'user_id': self.user_id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'priority': self.priority,
            'metadata': self.extra_data or {},
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Report(db.Model):
    """Snapshot de cada relatório gerado"""
    __tablename__ = 'reports'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empresa_id: Mapped[int] = mapped_column(Integer, default=1)
    report_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
