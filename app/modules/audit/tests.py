"""
Tests para la conciliación de libros

Verifica que, después de operar normalmente, los saldos materializados
coinciden con sus movimientos, y que una alteración directa se detecta.
"""

from decimal import Decimal

from app.modules.audit.service import ReconciliationService
from app.modules.audit import tasks as audit_tasks
from app.modules.cash.models import CashSession
from app.modules.cash.models import CashMovementType
from app.modules.cash.service import CashSessionService
from app.modules.customers.models import Customer
from app.modules.customers.service import CustomerService
from app.modules.products.models import Product
from app.modules.sales.models import PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleItemCreate
from app.modules.sales.service import SaleService


def _operate(db, tenant_id, context, make_product, make_customer, open_cash_session):
    """Ventas en efectivo y a cuenta, un pago y un egreso manual de caja"""
    product = make_product(stock=10)
    customer = make_customer(has_current_account=True)
    session = open_cash_session("500")
    sales = SaleService(db)
    sales.register_sale(context, SaleCreate(
        items=[SaleItemCreate(product_id=product.id, quantity=2)],
        payment_method=PaymentMethod.CASH
    ))
    sales.register_sale(context, SaleCreate(
        items=[SaleItemCreate(product_id=product.id, quantity=3)],
        customer_id=customer.id,
        payment_method=PaymentMethod.ACCOUNT
    ))
    CustomerService(db).register_payment(tenant_id, customer.id, Decimal("100"), "EFECTIVO")
    cash = CashSessionService(db)
    cash.record_movement(tenant_id, session.id, CashMovementType.EXPENSE, Decimal("50"), "Flete")
    return product, customer, session


class TestReconciliation:
    """Tests para ReconciliationService"""

    def test_no_drift_after_normal_operations(self, db_session, sample_tenant, admin_context,
                                              make_product, make_customer, open_cash_session):
        _, _, session = _operate(db_session, sample_tenant.id, admin_context,
                                 make_product, make_customer, open_cash_session)

        report = ReconciliationService(db_session).reconcile(sample_tenant.id)

        assert report.has_drift is False
        assert report.products_checked == 1
        assert report.customers_checked == 1
        assert report.open_session_id == session.id
        # 500 + 242 + 100 - 50
        assert report.open_session_balance == Decimal("792.00")

    def test_no_drift_after_closing(self, db_session, sample_tenant, admin_context,
                                    make_product, make_customer, open_cash_session):
        _, _, session = _operate(db_session, sample_tenant.id, admin_context,
                                 make_product, make_customer, open_cash_session)
        CashSessionService(db_session).close_session(sample_tenant.id, session.id, Decimal("790"))

        report = ReconciliationService(db_session).reconcile(sample_tenant.id)

        assert report.has_drift is False
        assert report.open_session_id is None

    def test_stock_tampering_detected(self, db_session, sample_tenant, make_product):
        product = make_product(stock=5)
        db_session.query(Product).filter(Product.id == product.id).update({Product.stock: 9})
        db_session.commit()

        report = ReconciliationService(db_session).reconcile(sample_tenant.id)

        assert report.has_drift is True
        assert len(report.stock_drift) == 1
        assert report.stock_drift[0].stock == 9
        assert report.stock_drift[0].ledger_total == 5

    def test_balance_tampering_detected(self, db_session, sample_tenant, make_customer):
        customer = make_customer(has_current_account=True)
        db_session.query(Customer).filter(Customer.id == customer.id).update({Customer.balance: Decimal("10")})
        db_session.commit()

        report = ReconciliationService(db_session).reconcile(sample_tenant.id)

        assert report.has_drift is True
        assert report.receivable_drift[0].customer_id == customer.id
        assert report.receivable_drift[0].ledger_total == Decimal("0.00")

    def test_closed_session_tampering_detected(self, db_session, sample_tenant, open_cash_session):
        session = open_cash_session("100")
        CashSessionService(db_session).close_session(sample_tenant.id, session.id, Decimal("100"))
        db_session.query(CashSession).filter(CashSession.id == session.id).update(
            {CashSession.expected_amount: Decimal("150")}
        )
        db_session.commit()

        report = ReconciliationService(db_session).reconcile(sample_tenant.id)

        assert report.has_drift is True
        assert report.cash_drift[0].recorded_expected == Decimal("150.00")
        assert report.cash_drift[0].ledger_expected == Decimal("100.00")

    def test_reports_are_tenant_scoped(self, db_session, sample_tenant, other_tenant, make_product):
        product = make_product(stock=5)
        db_session.query(Product).filter(Product.id == product.id).update({Product.stock: 1})
        db_session.commit()

        assert ReconciliationService(db_session).reconcile(other_tenant.id).has_drift is False

    def test_periodic_task(self, db_session, sample_tenant, make_product, monkeypatch):
        product = make_product(stock=5)
        db_session.query(Product).filter(Product.id == product.id).update({Product.stock: 2})
        db_session.commit()
        monkeypatch.setattr(audit_tasks, "SessionLocal", lambda: db_session)

        result = audit_tasks.reconcile_all_tenants()

        assert result["status"] == "completed"
        assert result["tenants"] == 1
        assert result["drifted"] == [str(sample_tenant.id)]


class TestReconciliationEndpoint:

    def test_report(self, client, office_headers, make_product):
        make_product(stock=3)

        response = client.get("/api/v1/audit/reconciliation", headers=office_headers)

        assert response.status_code == 200
        assert response.json()["has_drift"] is False
        assert response.json()["products_checked"] == 1

    def test_requires_report_permission(self, client, seller_headers):
        response = client.get("/api/v1/audit/reconciliation", headers=seller_headers)

        assert response.status_code == 403
