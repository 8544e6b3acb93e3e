"""
Tests para el módulo de Clientes y Cuenta Corriente

Cubren:
- CRUD con scope por tenant y baja lógica
- Pagos a cuenta (con y sin caja abierta, métodos no efectivo)
- Estado de cuenta
- Conservación: saldo == Σ débitos - Σ créditos
"""

import pytest
from pydantic import ValidationError
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import ConflictError, InvalidReference, NotFound, PolicyViolation
from app.modules.cash.models import CashMovement, CashMovementType
from app.modules.customers.models import Customer, AccountMovement, AccountMovementType
from app.modules.customers.schemas import CustomerUpdate
from app.modules.customers.service import CustomerService, ReceivableLedger
from app.modules.sales.models import PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleItemCreate
from app.modules.sales.service import SaleService


def _ledger_total(db, customer_id):
    total = Decimal("0")
    for movement in db.query(AccountMovement).filter(AccountMovement.customer_id == customer_id).all():
        total += movement.signed_amount
    return total


# ===== TESTS DEL LIBRO DE CUENTA CORRIENTE =====

class TestReceivableLedger:
    """Tests para ReceivableLedger"""

    def test_debit_and_credit_update_balance(self, db_session, sample_tenant, make_customer):
        customer = make_customer(has_current_account=True)
        ledger = ReceivableLedger(db_session)

        ledger.post(sample_tenant.id, customer.id, AccountMovementType.DEBIT, Decimal("300.00"), "Venta")
        ledger.post(sample_tenant.id, customer.id, AccountMovementType.CREDIT, Decimal("120.50"), "Pago")
        db_session.commit()

        db_session.refresh(customer)
        assert Decimal(customer.balance) == Decimal("179.50")
        assert _ledger_total(db_session, customer.id) == Decimal(customer.balance)

    def test_non_positive_amount_rejected(self, db_session, sample_tenant, make_customer):
        customer = make_customer()

        with pytest.raises(PolicyViolation):
            ReceivableLedger(db_session).post(sample_tenant.id, customer.id, AccountMovementType.DEBIT,
                                              Decimal("0"), "Nada")

    def test_unknown_customer(self, db_session, sample_tenant):
        with pytest.raises(InvalidReference):
            ReceivableLedger(db_session).post(sample_tenant.id, uuid4(), AccountMovementType.DEBIT,
                                              Decimal("10"), "Venta")

    def test_other_tenant_customer(self, db_session, other_tenant, make_customer):
        customer = make_customer()

        with pytest.raises(InvalidReference):
            ReceivableLedger(db_session).post(other_tenant.id, customer.id, AccountMovementType.DEBIT,
                                              Decimal("10"), "Venta")


# ===== TESTS DEL SERVICIO =====

class TestCustomerService:
    """Tests para CustomerService"""

    def test_create_customer(self, db_session, sample_tenant, make_customer):
        customer = make_customer(name="Taller El Rayo", has_current_account=True, special_discount="5",
                                 email="", tax_id="30-12345678-9")

        assert customer.tenant_id == sample_tenant.id
        assert customer.name == "Taller El Rayo"
        assert customer.email is None
        assert Decimal(customer.balance) == Decimal("0")
        assert Decimal(customer.special_discount) == Decimal("5")

    def test_update_customer(self, db_session, sample_tenant, make_customer):
        customer = make_customer()

        updated = CustomerService(db_session).update_customer(
            sample_tenant.id, customer.id, CustomerUpdate(has_current_account=True, phone="1144445555")
        )

        assert updated.has_current_account is True
        assert updated.phone == "1144445555"

    def test_update_rejects_null_required_fields(self):
        for field in ("name", "tax_condition", "has_current_account", "special_discount"):
            with pytest.raises(ValidationError):
                CustomerUpdate(**{field: None})

    def test_update_integrity_error_is_a_conflict(self, db_session, sample_tenant, make_customer):
        customer = make_customer(name="Taller Norte")

        with pytest.raises(ConflictError):
            CustomerService(db_session).update_customer(
                sample_tenant.id, customer.id, CustomerUpdate.model_construct(name=None)
            )

        db_session.refresh(customer)
        assert customer.name == "Taller Norte"

    def test_list_customers_with_search(self, db_session, sample_tenant, other_tenant, make_customer):
        make_customer(name="Lubricentro Norte")
        make_customer(name="Gomería Sur")
        db_session.add(Customer(tenant_id=other_tenant.id, name="Lubricentro Ajeno"))
        db_session.commit()

        service = CustomerService(db_session)
        assert service.list_customers(sample_tenant.id)["total"] == 2
        result = service.list_customers(sample_tenant.id, search="lubri")
        assert result["total"] == 1
        assert result["customers"][0].name == "Lubricentro Norte"

    def test_delete_customer_soft(self, db_session, sample_tenant, make_customer):
        customer = make_customer()
        service = CustomerService(db_session)

        service.delete_customer(sample_tenant.id, customer.id)

        with pytest.raises(NotFound):
            service.get_customer(sample_tenant.id, customer.id)
        assert db_session.query(Customer).filter(Customer.id == customer.id).first().is_deleted

    def test_delete_customer_with_balance_refused(self, db_session, sample_tenant, make_customer):
        customer = make_customer(has_current_account=True)
        ReceivableLedger(db_session).post(sample_tenant.id, customer.id, AccountMovementType.DEBIT,
                                          Decimal("50"), "Venta")
        db_session.commit()

        with pytest.raises(ConflictError):
            CustomerService(db_session).delete_customer(sample_tenant.id, customer.id)

    def test_cash_payment_with_open_session(self, db_session, sample_tenant, sample_user,
                                            make_customer, open_cash_session):
        """Pago en efectivo con caja abierta: crédito + ingreso en caja referenciando el pago"""
        customer = make_customer(has_current_account=True)
        ReceivableLedger(db_session).post(sample_tenant.id, customer.id, AccountMovementType.DEBIT,
                                          Decimal("500"), "Venta")
        db_session.commit()
        open_cash_session()

        result = CustomerService(db_session).register_payment(
            sample_tenant.id, customer.id, Decimal("200"), "EFECTIVO", user_id=sample_user.id
        )

        assert Decimal(result["balance"]) == Decimal("300.00")
        assert result["movement"].type == AccountMovementType.CREDIT
        assert result["movement"].concept == "Pago a cuenta"
        assert result["cash_movement_id"] is not None

        cash_movement = db_session.query(CashMovement).one()
        assert cash_movement.type == CashMovementType.INCOME
        assert Decimal(cash_movement.amount) == Decimal("200.00")
        assert cash_movement.concept == "Cobro Cta. Cte.: Pago a cuenta"
        assert cash_movement.reference == str(result["movement"].id)

    def test_cash_payment_without_open_session(self, db_session, sample_tenant, make_customer):
        """Sin caja abierta el pago se registra igual, sin rastro en caja"""
        customer = make_customer(has_current_account=True)

        result = CustomerService(db_session).register_payment(
            sample_tenant.id, customer.id, Decimal("80"), "EFECTIVO", concept="Adelanto"
        )

        assert result["cash_movement_id"] is None
        assert Decimal(result["balance"]) == Decimal("-80.00")
        assert result["movement"].concept == "Adelanto"
        assert db_session.query(CashMovement).count() == 0

    def test_transfer_payment_skips_cash(self, db_session, sample_tenant, make_customer, open_cash_session):
        customer = make_customer(has_current_account=True)
        open_cash_session()

        result = CustomerService(db_session).register_payment(
            sample_tenant.id, customer.id, Decimal("80"), "TRANSFERENCIA"
        )

        assert result["cash_movement_id"] is None
        assert db_session.query(CashMovement).count() == 0

    def test_payment_validations(self, db_session, sample_tenant, make_customer):
        customer = make_customer()
        service = CustomerService(db_session)

        with pytest.raises(PolicyViolation):
            service.register_payment(sample_tenant.id, customer.id, Decimal("10"), "CUENTA_CORRIENTE")
        with pytest.raises(PolicyViolation):
            service.register_payment(sample_tenant.id, customer.id, Decimal("0"), "EFECTIVO")
        with pytest.raises(NotFound):
            service.register_payment(sample_tenant.id, uuid4(), Decimal("10"), "EFECTIVO")

    def test_statement(self, db_session, sample_tenant, make_customer):
        customer = make_customer(has_current_account=True)
        ledger = ReceivableLedger(db_session)
        ledger.post(sample_tenant.id, customer.id, AccountMovementType.DEBIT, Decimal("100"), "Venta 1")
        ledger.post(sample_tenant.id, customer.id, AccountMovementType.DEBIT, Decimal("50"), "Venta 2")
        db_session.commit()
        CustomerService(db_session).register_payment(sample_tenant.id, customer.id, Decimal("30"), "OTRO")

        statement = CustomerService(db_session).get_statement(sample_tenant.id, customer.id)

        assert Decimal(statement["balance"]) == Decimal("120.00")
        assert len(statement["movements"]) == 3

    def test_balance_matches_ledger_after_sales_and_payments(self, db_session, sample_tenant, admin_context,
                                                             make_product, make_customer):
        """Conservación: saldo == Σ débitos - Σ créditos"""
        product = make_product(sale_price="100.00", tax_rate="21", stock=10)
        customer = make_customer(has_current_account=True)
        sales = SaleService(db_session)
        for quantity in (1, 2, 3):
            sales.register_sale(admin_context, SaleCreate(
                items=[SaleItemCreate(product_id=product.id, quantity=quantity)],
                customer_id=customer.id,
                payment_method=PaymentMethod.ACCOUNT
            ))
        CustomerService(db_session).register_payment(sample_tenant.id, customer.id, Decimal("200"), "TRANSFERENCIA")

        db_session.refresh(customer)
        assert Decimal(customer.balance) == Decimal("526.00")
        assert _ledger_total(db_session, customer.id) == Decimal(customer.balance)


# ===== TESTS DE ENDPOINTS =====

class TestCustomerEndpoints:
    """Tests de la API de clientes"""

    def test_crud(self, client, office_headers):
        created = client.post("/api/v1/customers/", headers=office_headers, json={
            "name": "Taller Central",
            "email": "taller@central.com.ar",
            "has_current_account": True
        })
        assert created.status_code == 201
        customer_id = created.json()["id"]

        listing = client.get("/api/v1/customers/", headers=office_headers)
        assert listing.json()["total"] == 1

        patched = client.patch(f"/api/v1/customers/{customer_id}", headers=office_headers,
                               json={"special_discount": "7.5"})
        assert patched.status_code == 200
        assert Decimal(str(patched.json()["special_discount"])) == Decimal("7.5")

    def test_patch_null_name_rejected(self, client, office_headers, make_customer):
        customer = make_customer()

        response = client.patch(f"/api/v1/customers/{customer.id}", headers=office_headers, json={"name": None})

        assert response.status_code == 422

    def test_patch_clears_optional_field(self, client, office_headers, make_customer):
        customer = make_customer(phone="1144445555")

        response = client.patch(f"/api/v1/customers/{customer.id}", headers=office_headers, json={"phone": None})

        assert response.status_code == 200
        assert response.json()["phone"] is None

    def test_payment_and_statement(self, client, office_headers, make_customer):
        customer = make_customer(has_current_account=True)

        response = client.post(f"/api/v1/customers/{customer.id}/payments", headers=office_headers,
                               json={"amount": "150.00", "method": "TRANSFERENCIA"})
        assert response.status_code == 201
        assert Decimal(str(response.json()["balance"])) == Decimal("-150.00")

        statement = client.get(f"/api/v1/customers/{customer.id}/statement", headers=office_headers)
        assert statement.status_code == 200
        assert len(statement.json()["movements"]) == 1
        assert statement.json()["movements"][0]["type"] == "CREDITO"

    def test_payment_invalid_method(self, client, office_headers, make_customer):
        customer = make_customer()

        response = client.post(f"/api/v1/customers/{customer.id}/payments", headers=office_headers,
                               json={"amount": "10", "method": "TARJETA"})

        assert response.status_code == 422

    def test_payment_requires_permission(self, client, seller_headers, make_customer):
        """VENDEDOR no gestiona cuentas corrientes"""
        customer = make_customer()

        response = client.post(f"/api/v1/customers/{customer.id}/payments", headers=seller_headers,
                               json={"amount": "10", "method": "EFECTIVO"})

        assert response.status_code == 403

    def test_delete_with_balance_conflict(self, client, admin_headers, db_session, sample_tenant, make_customer):
        customer = make_customer(has_current_account=True)
        ReceivableLedger(db_session).post(sample_tenant.id, customer.id, AccountMovementType.DEBIT,
                                          Decimal("10"), "Venta")
        db_session.commit()

        response = client.delete(f"/api/v1/customers/{customer.id}", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_other_tenant_customer_not_found(self, client, other_headers, make_customer):
        customer = make_customer()

        response = client.get(f"/api/v1/customers/{customer.id}", headers=other_headers)

        assert response.status_code == 404
