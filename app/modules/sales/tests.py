"""
Tests para el módulo de Ventas

Cubren:
- Registro de venta en efectivo, tarjeta y cuenta corriente
- Validaciones previas (permiso, carrito vacío, referencias, stock, caja)
- Atomicidad: un fallo a mitad de la transacción no deja rastros
- Idempotencia por idempotency_key
- Cálculo de precios (IVA, descuento especial, redondeo)
- Invalidación de vistas después del commit

Todos los datos están scoped por tenant_id.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import (
    InsufficientStock, InvalidReference, NoOpenCashSession, PermissionDenied,
    PolicyViolation, TransactionAborted
)
from app.modules.auth.schemas import AuthContext
from app.modules.cash.models import CashMovement, CashMovementType
from app.modules.cash.service import CashSessionService
from app.modules.customers.models import AccountMovement, AccountMovementType
from app.modules.inventory.service import StockLedgerService
from app.modules.products.models import Product, StockMovement, StockMovementType
from app.modules.products.service import ProductService
from app.modules.sales.models import Sale, SaleLine, PaymentMethod
from app.modules.sales.pricing import unit_price, price_line, sale_total
from app.modules.sales.schemas import SaleCreate, SaleItemCreate
from app.modules.sales.service import SaleService, INVALIDATED_VIEWS


def _sale(product, quantity, method=PaymentMethod.CASH, **kwargs):
    return SaleCreate(
        items=[SaleItemCreate(product_id=product.id, quantity=quantity)],
        payment_method=method,
        **kwargs
    )


def _sale_movements(db):
    return db.query(StockMovement).filter(StockMovement.type == StockMovementType.SALE).all()


# ===== TESTS DE PRECIOS =====

class TestPricing:
    """Tests para el cálculo puro de precios"""

    def test_unit_price_with_tax(self):
        """IVA 21% sobre 100"""
        assert unit_price(Decimal("100"), Decimal("21")) == Decimal("121.00")

    def test_unit_price_with_discount(self):
        """Descuento especial aplicado después del IVA"""
        assert unit_price(Decimal("100"), Decimal("21"), Decimal("10")) == Decimal("108.90")

    def test_unit_price_rounds_half_up(self):
        assert unit_price(Decimal("10.005"), Decimal("0")) == Decimal("10.01")
        assert unit_price(Decimal("0.125"), Decimal("0")) == Decimal("0.13")

    def test_pricing_is_idempotent(self):
        """Mismos datos, mismo resultado"""
        first = price_line(Decimal("33.33"), Decimal("10.5"), 3, Decimal("5"))
        second = price_line(Decimal("33.33"), Decimal("10.5"), 3, Decimal("5"))
        assert first == second

    def test_subtotal_and_total_are_sums_of_rounded_prices(self):
        lines = [
            price_line(Decimal("100"), Decimal("21"), 2),
            price_line(Decimal("10.10"), Decimal("21"), 3),
        ]
        assert lines[0].subtotal == Decimal("242.00")
        assert lines[1].unit_price == Decimal("12.22")
        assert lines[1].subtotal == Decimal("36.66")
        assert sale_total(lines) == Decimal("278.66")

    def test_sale_total_empty(self):
        assert sale_total([]) == Decimal("0.00")


# ===== TESTS DEL SERVICIO =====

class TestRegisterSale:
    """Tests para SaleService.register_sale"""

    def test_cash_sale_updates_all_ledgers(self, db_session, sample_tenant, admin_context,
                                          make_product, open_cash_session):
        """Venta en efectivo: total 242, stock 5 -> 3, un movimiento de stock y uno de caja"""
        product = make_product(sale_price="100.00", tax_rate="21", stock=5)
        session = open_cash_session("0")

        result = SaleService(db_session).register_sale(admin_context, _sale(product, 2))

        assert result.total == Decimal("242.00")
        assert result.replayed is False
        assert len(result.lines) == 1
        assert result.lines[0].unit_price == Decimal("121.00")

        db_session.refresh(product)
        assert product.stock == 3

        movements = _sale_movements(db_session)
        assert len(movements) == 1
        assert movements[0].quantity == -2
        assert movements[0].reference == str(result.id)

        cash_movements = db_session.query(CashMovement).all()
        assert len(cash_movements) == 1
        assert cash_movements[0].type == CashMovementType.INCOME
        assert Decimal(cash_movements[0].amount) == Decimal("242.00")
        assert cash_movements[0].reference == str(result.id)
        assert cash_movements[0].concept == f"Venta #{str(result.id).split('-')[0].upper()}"

        assert CashSessionService(db_session).compute_expected(session) == Decimal("242.00")

    def test_insufficient_stock_has_no_side_effects(self, db_session, admin_context,
                                                    make_product, open_cash_session):
        """Cantidad mayor al stock: InsufficientStock y nada persistido"""
        product = make_product(stock=5)
        open_cash_session()

        with pytest.raises(InsufficientStock):
            SaleService(db_session).register_sale(admin_context, _sale(product, 10))

        db_session.refresh(product)
        assert product.stock == 5
        assert db_session.query(Sale).count() == 0
        assert _sale_movements(db_session) == []
        assert db_session.query(CashMovement).count() == 0

    def test_cash_sale_without_open_session_rolls_back(self, db_session, admin_context, make_product):
        """Efectivo sin caja abierta: NoOpenCashSession y rollback completo"""
        product = make_product(stock=5)

        with pytest.raises(NoOpenCashSession):
            SaleService(db_session).register_sale(admin_context, _sale(product, 2))

        db_session.refresh(product)
        assert product.stock == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0
        assert _sale_movements(db_session) == []

    def test_account_sale_requires_current_account(self, db_session, admin_context,
                                                   make_product, make_customer):
        """Cuenta corriente con cliente sin cuenta habilitada: PolicyViolation antes de escribir"""
        product = make_product(stock=5)
        customer = make_customer(has_current_account=False)

        with pytest.raises(PolicyViolation):
            SaleService(db_session).register_sale(
                admin_context, _sale(product, 1, PaymentMethod.ACCOUNT, customer_id=customer.id)
            )

        db_session.refresh(product)
        db_session.refresh(customer)
        assert product.stock == 5
        assert Decimal(customer.balance) == Decimal("0")
        assert db_session.query(Sale).count() == 0

    def test_account_sale_without_customer_is_rejected(self, db_session, admin_context, make_product):
        product = make_product(stock=5)

        with pytest.raises(PolicyViolation):
            SaleService(db_session).register_sale(admin_context, _sale(product, 1, PaymentMethod.ACCOUNT))

    def test_customer_discount_applied(self, db_session, admin_context, make_product, make_customer):
        """Descuento especial del 10%: precio unitario 108.90"""
        product = make_product(sale_price="100.00", tax_rate="21", stock=5)
        customer = make_customer(special_discount="10")

        result = SaleService(db_session).register_sale(
            admin_context, _sale(product, 1, PaymentMethod.CARD, customer_id=customer.id)
        )

        assert result.lines[0].unit_price == Decimal("108.90")
        assert result.total == Decimal("108.90")
        assert result.customer_id == customer.id

    def test_card_sale_needs_no_cash_session(self, db_session, admin_context, make_product):
        product = make_product(stock=5)

        result = SaleService(db_session).register_sale(admin_context, _sale(product, 1, PaymentMethod.CARD))

        assert result.payment_method == PaymentMethod.CARD
        assert db_session.query(CashMovement).count() == 0

    def test_account_sale_debits_customer(self, db_session, admin_context, make_product, make_customer):
        """Cuenta corriente: débito por el total y saldo incrementado"""
        product = make_product(sale_price="100.00", tax_rate="21", stock=5)
        customer = make_customer(has_current_account=True)

        result = SaleService(db_session).register_sale(
            admin_context, _sale(product, 2, PaymentMethod.ACCOUNT, customer_id=customer.id)
        )

        db_session.refresh(customer)
        assert Decimal(customer.balance) == Decimal("242.00")

        debit = db_session.query(AccountMovement).one()
        assert debit.type == AccountMovementType.DEBIT
        assert Decimal(debit.amount) == Decimal("242.00")
        assert debit.reference == str(result.id)
        assert debit.concept.startswith("Venta registrada: #")
        assert db_session.query(CashMovement).count() == 0

    def test_failure_after_stock_exit_rolls_back_everything(self, db_session, sample_tenant, admin_context,
                                                            make_product, open_cash_session,
                                                            monkeypatch, dispatched_invalidations):
        """Falla entre la salida de stock y el ingreso en caja: nada queda persistido"""
        product = make_product(stock=5)
        open_cash_session()

        def boom(self, *args, **kwargs):
            raise RuntimeError("fallo inyectado")

        monkeypatch.setattr(CashSessionService, "add_sale_income", boom)

        with pytest.raises(TransactionAborted):
            SaleService(db_session).register_sale(admin_context, _sale(product, 2))

        db_session.refresh(product)
        assert product.stock == 5
        assert db_session.query(Sale).count() == 0
        assert _sale_movements(db_session) == []
        assert db_session.query(CashMovement).count() == 0
        assert all("ventas" not in views for _, views in dispatched_invalidations)

    def test_idempotent_replay_returns_original_sale(self, db_session, admin_context,
                                                     make_product, open_cash_session):
        """Reintento con la misma clave: misma venta, sin nuevas escrituras"""
        product = make_product(stock=5)
        open_cash_session()
        service = SaleService(db_session)

        first = service.register_sale(admin_context, _sale(product, 2, idempotency_key="pos-1-0001"))
        second = service.register_sale(admin_context, _sale(product, 2, idempotency_key="pos-1-0001"))

        assert second.replayed is True
        assert second.id == first.id
        assert db_session.query(Sale).count() == 1
        assert db_session.query(CashMovement).count() == 1
        db_session.refresh(product)
        assert product.stock == 3

    def test_concurrent_replay_with_same_key(self, db_session, admin_context, make_product,
                                             open_cash_session, monkeypatch):
        """Dos pedidos con la misma clave pasan la búsqueda previa: el perdedor devuelve la venta ganadora"""
        product = make_product(stock=5)
        open_cash_session()
        service = SaleService(db_session)
        first = service.register_sale(admin_context, _sale(product, 2, idempotency_key="pos-1-0002"))

        lookup = SaleService._find_by_idempotency_key
        calls = {"n": 0}

        def stale_lookup(self, tenant_id, key):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return lookup(self, tenant_id, key)

        monkeypatch.setattr(SaleService, "_find_by_idempotency_key", stale_lookup)

        second = service.register_sale(admin_context, _sale(product, 2, idempotency_key="pos-1-0002"))

        assert second.replayed is True
        assert second.id == first.id
        assert db_session.query(Sale).count() == 1
        assert db_session.query(CashMovement).count() == 1
        db_session.refresh(product)
        assert product.stock == 3

    def test_stock_consumed_after_snapshot(self, db_session, admin_context, make_product,
                                           open_cash_session, monkeypatch):
        """La verificación previa pasa pero otra venta consumió el stock: el decremento condicional falla"""
        product = make_product(stock=5)
        open_cash_session()
        record_sale_exit = StockLedgerService.record_sale_exit

        def competing_sale_first(self, tenant_id, product_id, quantity, sale_id, user_id=None):
            self.db.query(Product).filter(Product.id == product_id).update({Product.stock: 1})
            return record_sale_exit(self, tenant_id, product_id, quantity, sale_id, user_id)

        monkeypatch.setattr(StockLedgerService, "record_sale_exit", competing_sale_first)

        with pytest.raises(InsufficientStock):
            SaleService(db_session).register_sale(admin_context, _sale(product, 3))

        assert db_session.query(Sale).count() == 0
        assert _sale_movements(db_session) == []
        assert db_session.query(CashMovement).count() == 0

    def test_duplicate_items_are_merged(self, db_session, admin_context, make_product):
        product = make_product(stock=5)
        data = SaleCreate(
            items=[
                SaleItemCreate(product_id=product.id, quantity=1),
                SaleItemCreate(product_id=product.id, quantity=2),
            ],
            payment_method=PaymentMethod.TRANSFER
        )

        result = SaleService(db_session).register_sale(admin_context, data)

        assert len(result.lines) == 1
        assert result.lines[0].quantity == 3
        assert len(_sale_movements(db_session)) == 1
        db_session.refresh(product)
        assert product.stock == 2

    def test_merged_quantity_checked_against_stock(self, db_session, admin_context, make_product):
        product = make_product(stock=3)
        data = SaleCreate(
            items=[
                SaleItemCreate(product_id=product.id, quantity=2),
                SaleItemCreate(product_id=product.id, quantity=2),
            ],
            payment_method=PaymentMethod.CARD
        )

        with pytest.raises(InsufficientStock):
            SaleService(db_session).register_sale(admin_context, data)

    def test_empty_cart_rejected(self, db_session, admin_context):
        with pytest.raises(PolicyViolation, match="carrito"):
            SaleService(db_session).register_sale(admin_context, SaleCreate(items=[]))

    def test_permission_required(self, db_session, sample_tenant, sample_user, make_product):
        """Sin vta:cobrar no se registra la venta"""
        product = make_product(stock=5)
        context = AuthContext(
            user_id=sample_user.id,
            tenant_id=sample_tenant.id,
            user_role="SIN_ROL",
            permissions=["fil:ver", "vta:acceso"]
        )

        with pytest.raises(PermissionDenied):
            SaleService(db_session).register_sale(context, _sale(product, 1, PaymentMethod.CARD))

    def test_unknown_product_rejected(self, db_session, admin_context, make_product):
        product = make_product(stock=5)
        data = SaleCreate(
            items=[
                SaleItemCreate(product_id=product.id, quantity=1),
                SaleItemCreate(product_id=uuid4(), quantity=1),
            ],
            payment_method=PaymentMethod.CARD
        )

        with pytest.raises(InvalidReference):
            SaleService(db_session).register_sale(admin_context, data)

        db_session.refresh(product)
        assert product.stock == 5

    def test_deleted_product_rejected(self, db_session, sample_tenant, admin_context, make_product):
        product = make_product(stock=5)
        ProductService(db_session).delete_product(sample_tenant.id, product.id)

        with pytest.raises(InvalidReference):
            SaleService(db_session).register_sale(admin_context, _sale(product, 1, PaymentMethod.CARD))

    def test_customer_from_other_tenant_rejected(self, db_session, other_tenant, admin_context, make_product):
        from app.modules.customers.models import Customer

        product = make_product(stock=5)
        foreign = Customer(tenant_id=other_tenant.id, name="Ajeno", has_current_account=True)
        db_session.add(foreign)
        db_session.commit()

        with pytest.raises(InvalidReference):
            SaleService(db_session).register_sale(
                admin_context, _sale(product, 1, PaymentMethod.ACCOUNT, customer_id=foreign.id)
            )

    def test_views_invalidated_after_commit(self, db_session, sample_tenant, admin_context,
                                            make_product, dispatched_invalidations):
        product = make_product(stock=5)

        SaleService(db_session).register_sale(admin_context, _sale(product, 1, PaymentMethod.CARD))

        assert (str(sample_tenant.id), INVALIDATED_VIEWS) in dispatched_invalidations

    def test_list_and_get_sales(self, db_session, sample_tenant, other_tenant, admin_context, make_product):
        product = make_product(stock=10)
        service = SaleService(db_session)
        first = service.register_sale(admin_context, _sale(product, 1, PaymentMethod.CARD))
        service.register_sale(admin_context, _sale(product, 2, PaymentMethod.CARD))

        listing = service.list_sales(sample_tenant.id)
        assert listing["total"] == 2
        assert service.get_sale(sample_tenant.id, first.id).id == first.id

        assert service.list_sales(other_tenant.id)["total"] == 0


# ===== TESTS DE ENDPOINTS =====

class TestSalesEndpoints:
    """Tests de la API de ventas"""

    def test_register_sale(self, client, seller_headers, make_product, open_cash_session):
        product = make_product(stock=5)
        open_cash_session()

        response = client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 2}],
            "payment_method": "EFECTIVO"
        })

        assert response.status_code == 201
        body = response.json()
        assert Decimal(str(body["total"])) == Decimal("242.00")
        assert body["payment_method"] == "EFECTIVO"
        assert body["replayed"] is False

    def test_register_sale_without_cash_session(self, client, seller_headers, make_product):
        product = make_product(stock=5)

        response = client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 1}],
            "payment_method": "EFECTIVO"
        })

        assert response.status_code == 409
        assert response.json()["code"] == "no_open_cash_session"

    def test_register_sale_insufficient_stock(self, client, seller_headers, make_product):
        product = make_product(stock=1)

        response = client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 2}],
            "payment_method": "TARJETA"
        })

        assert response.status_code == 409
        assert response.json()["code"] == "insufficient_stock"

    def test_empty_cart(self, client, seller_headers):
        response = client.post("/api/v1/sales/", headers=seller_headers, json={"items": []})

        assert response.status_code == 422
        assert response.json()["code"] == "policy_violation"

    def test_invalid_quantity(self, client, seller_headers, make_product):
        product = make_product(stock=5)

        response = client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 0}]
        })

        assert response.status_code == 422

    def test_user_without_sale_permission(self, client, db_session, sample_tenant, make_product):
        from app.modules.auth.models import User
        from app.modules.auth.utils import create_access_token

        product = make_product(stock=5)
        user = User(tenant_id=sample_tenant.id, email="consulta@repuestos.com.ar",
                    password="x", legacy_role="CONSULTA", is_active=True)
        db_session.add(user)
        db_session.commit()
        token = create_access_token({"sub": str(user.id), "tenant_id": str(sample_tenant.id)})

        response = client.post("/api/v1/sales/", headers={"Authorization": f"Bearer {token}"}, json={
            "items": [{"product_id": str(product.id), "quantity": 1}],
            "payment_method": "TARJETA"
        })

        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"

    def test_replay_through_api(self, client, seller_headers, make_product, open_cash_session):
        product = make_product(stock=5)
        open_cash_session()
        payload = {
            "items": [{"product_id": str(product.id), "quantity": 1}],
            "payment_method": "EFECTIVO",
            "idempotency_key": "caja1-000123"
        }

        first = client.post("/api/v1/sales/", headers=seller_headers, json=payload)
        second = client.post("/api/v1/sales/", headers=seller_headers, json=payload)

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["replayed"] is True

    def test_get_sale_is_tenant_scoped(self, client, seller_headers, other_headers, make_product):
        product = make_product(stock=5)
        created = client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 1}],
            "payment_method": "TARJETA"
        }).json()

        own = client.get(f"/api/v1/sales/{created['id']}", headers=seller_headers)
        foreign = client.get(f"/api/v1/sales/{created['id']}", headers=other_headers)

        assert own.status_code == 200
        assert len(own.json()["lines"]) == 1
        assert foreign.status_code == 404

    def test_list_sales(self, client, seller_headers, make_product):
        product = make_product(stock=5)
        client.post("/api/v1/sales/", headers=seller_headers, json={
            "items": [{"product_id": str(product.id), "quantity": 1}],
            "payment_method": "TRANSFERENCIA"
        })

        response = client.get("/api/v1/sales/", headers=seller_headers)

        assert response.status_code == 200
        assert response.json()["total"] == 1
