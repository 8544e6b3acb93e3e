"""
Fixtures compartidos por los tests de todos los módulos.

Base SQLite en memoria (una sola conexión compartida) con soporte de
SAVEPOINT, cliente FastAPI con get_db sobrescrito, usuarios por rol con sus
tokens, y el despacho de tareas Celery reemplazado por un registro en memoria.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database.database import Base, get_db
from app.common import tasks as common_tasks
from app.modules.auth.models import Tenant, User
from app.modules.auth.permissions import resolve_permissions, roles_for_user
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import create_access_token
from app.modules.cash.service import CashSessionService
from app.modules.customers.schemas import CustomerCreate
from app.modules.customers.service import CustomerService
from app.modules.products.schemas import ProductCreate
from app.modules.products.service import ProductService


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite no emite BEGIN por sí mismo; sin esto los SAVEPOINT no funcionan
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ===== BASE DE DATOS Y CLIENTE =====

@pytest.fixture
def db_session():
    """Sesión sobre un esquema recién creado"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """TestClient que comparte la sesión del test"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def dispatched_invalidations(monkeypatch):
    """Invalidaciones de vistas encoladas durante el test: [(tenant_id, views)]"""
    calls = []
    monkeypatch.setattr(
        common_tasks.invalidate_views, "delay",
        lambda tenant_id, views: calls.append((tenant_id, views))
    )
    return calls


# ===== TENANTS Y USUARIOS =====

def _create_user(db, tenant, email, legacy_role, password="not-a-real-hash"):
    user = User(
        tenant_id=tenant.id,
        email=email,
        name=email.split("@")[0],
        password=password,
        legacy_role=legacy_role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers_for(user):
    token = create_access_token({"sub": str(user.id), "tenant_id": str(user.tenant_id)})
    return {"Authorization": f"Bearer {token}"}


def auth_context_for(user):
    return AuthContext(
        user_id=user.id,
        tenant_id=user.tenant_id,
        user_role=user.legacy_role,
        permissions=sorted(resolve_permissions(roles_for_user(user))),
    )


@pytest.fixture
def sample_tenant(db_session):
    tenant = Tenant(name="Repuestos Test")
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture
def other_tenant(db_session):
    tenant = Tenant(name="Otro Comercio")
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture
def sample_user(db_session, sample_tenant):
    """Usuario ADMIN (admin:all)"""
    return _create_user(db_session, sample_tenant, "admin@repuestos.com.ar", "ADMIN")


@pytest.fixture
def seller_user(db_session, sample_tenant):
    return _create_user(db_session, sample_tenant, "vendedor@repuestos.com.ar", "VENDEDOR")


@pytest.fixture
def office_user(db_session, sample_tenant):
    return _create_user(db_session, sample_tenant, "oficina@repuestos.com.ar", "ADMINISTRATIVO")


@pytest.fixture
def other_user(db_session, other_tenant):
    """ADMIN de otro comercio"""
    return _create_user(db_session, other_tenant, "admin@otro.com.ar", "ADMIN")


@pytest.fixture
def other_headers(other_user):
    return auth_headers_for(other_user)


@pytest.fixture
def admin_headers(sample_user):
    return auth_headers_for(sample_user)


@pytest.fixture
def seller_headers(seller_user):
    return auth_headers_for(seller_user)


@pytest.fixture
def office_headers(office_user):
    return auth_headers_for(office_user)


@pytest.fixture
def admin_context(sample_user):
    return auth_context_for(sample_user)


@pytest.fixture
def seller_context(seller_user):
    return auth_context_for(seller_user)


# ===== DATOS DE NEGOCIO =====

@pytest.fixture
def make_product(db_session, sample_tenant, sample_user):
    """Crea productos por el servicio, así el stock inicial queda en el kardex"""
    counter = {"n": 0}

    def _make(sale_price="100.00", tax_rate="21", stock=5, **overrides):
        counter["n"] += 1
        data = ProductCreate(
            sku=overrides.pop("sku", f"SKU-{counter['n']:03d}"),
            name=overrides.pop("name", f"Producto {counter['n']}"),
            sale_price=Decimal(sale_price),
            purchase_price=Decimal(overrides.pop("purchase_price", "50.00")),
            tax_rate=Decimal(tax_rate),
            stock=stock,
            **overrides
        )
        return ProductService(db_session).create_product(sample_tenant.id, data, sample_user.id)

    return _make


@pytest.fixture
def make_customer(db_session, sample_tenant):
    counter = {"n": 0}

    def _make(has_current_account=False, special_discount="0", **overrides):
        counter["n"] += 1
        data = CustomerCreate(
            name=overrides.pop("name", f"Cliente {counter['n']}"),
            has_current_account=has_current_account,
            special_discount=Decimal(special_discount),
            **overrides
        )
        return CustomerService(db_session).create_customer(sample_tenant.id, data)

    return _make


@pytest.fixture
def open_cash_session(db_session, sample_tenant, sample_user):
    """Abre la caja del tenant con el fondo indicado (por defecto 0)"""
    def _open(opening_amount="0"):
        return CashSessionService(db_session).open_session(
            sample_tenant.id, Decimal(opening_amount), sample_user.id
        )

    return _open
