"""
Conciliación de saldos materializados contra sus libros.

- Product.stock        == Σ StockMovement.quantity
- Customer.balance     == Σ DEBITO - Σ CREDITO
- CashSession.expected_amount (cerradas) == apertura + ingresos - egresos

Las diferencias se devuelven en el reporte y se registran con nivel ERROR.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Tuple
from uuid import UUID
import logging

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.modules.auth.models import Tenant
from app.modules.cash.models import CashSession, CashSessionStatus
from app.modules.cash.service import CashSessionService
from app.modules.customers.models import Customer, AccountMovement, AccountMovementType
from app.modules.products.models import Product, StockMovement
from app.modules.audit.schemas import StockDrift, ReceivableDrift, CashDrift, ReconciliationReport

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


class ReconciliationService:

    def __init__(self, db: Session):
        self.db = db
        self.cash = CashSessionService(db)

    def check_stock(self, tenant_id: UUID) -> Tuple[int, List[StockDrift]]:
        ledger = self.db.query(
            StockMovement.product_id.label("product_id"),
            func.sum(StockMovement.quantity).label("total")
        ).filter(
            StockMovement.tenant_id == tenant_id
        ).group_by(StockMovement.product_id).subquery()

        rows = self.db.query(
            Product.id, Product.sku, Product.stock, func.coalesce(ledger.c.total, 0)
        ).outerjoin(ledger, ledger.c.product_id == Product.id).filter(
            Product.tenant_id == tenant_id
        ).all()

        drift = [
            StockDrift(product_id=pid, sku=sku, stock=int(stock or 0), ledger_total=int(total or 0))
            for pid, sku, stock, total in rows
            if int(stock or 0) != int(total or 0)
        ]
        return len(rows), drift

    def check_receivables(self, tenant_id: UUID) -> Tuple[int, List[ReceivableDrift]]:
        signed = case(
            (AccountMovement.type == AccountMovementType.DEBIT, AccountMovement.amount),
            else_=-AccountMovement.amount
        )
        ledger = self.db.query(
            AccountMovement.customer_id.label("customer_id"),
            func.sum(signed).label("total")
        ).filter(
            AccountMovement.tenant_id == tenant_id
        ).group_by(AccountMovement.customer_id).subquery()

        rows = self.db.query(
            Customer.id, Customer.name, Customer.balance, func.coalesce(ledger.c.total, 0)
        ).outerjoin(ledger, ledger.c.customer_id == Customer.id).filter(
            Customer.tenant_id == tenant_id
        ).all()

        drift = [
            ReceivableDrift(customer_id=cid, name=name, balance=_money(balance), ledger_total=_money(total))
            for cid, name, balance, total in rows
            if _money(balance) != _money(total)
        ]
        return len(rows), drift

    def check_cash(self, tenant_id: UUID) -> List[CashDrift]:
        sessions = self.db.query(CashSession).filter(
            CashSession.tenant_id == tenant_id,
            CashSession.status == CashSessionStatus.CLOSED,
            CashSession.expected_amount.isnot(None)
        ).all()

        drift = []
        for session in sessions:
            recomputed = self.cash.compute_expected(session)
            if _money(session.expected_amount) != recomputed:
                drift.append(CashDrift(
                    session_id=session.id,
                    recorded_expected=_money(session.expected_amount),
                    ledger_expected=recomputed
                ))
        return drift

    def reconcile(self, tenant_id: UUID) -> ReconciliationReport:
        products_checked, stock_drift = self.check_stock(tenant_id)
        customers_checked, receivable_drift = self.check_receivables(tenant_id)
        cash_drift = self.check_cash(tenant_id)

        report = ReconciliationReport(
            tenant_id=tenant_id,
            checked_at=datetime.now(timezone.utc),
            products_checked=products_checked,
            customers_checked=customers_checked,
            stock_drift=stock_drift,
            receivable_drift=receivable_drift,
            cash_drift=cash_drift,
            has_drift=bool(stock_drift or receivable_drift or cash_drift)
        )

        open_session = self.cash.get_current_session(tenant_id)
        if open_session:
            report.open_session_id = open_session.id
            report.open_session_balance = self.cash.compute_expected(open_session)

        if report.has_drift:
            logger.error(
                f"Ledger drift for tenant {tenant_id}: {len(stock_drift)} products, "
                f"{len(receivable_drift)} customers, {len(cash_drift)} cash sessions"
            )
        else:
            logger.info(f"Ledgers consistent for tenant {tenant_id}")
        return report

    def reconcile_all(self) -> List[ReconciliationReport]:
        tenant_ids = [row.id for row in self.db.query(Tenant.id).filter(Tenant.is_active == True).all()]
        return [self.reconcile(tenant_id) for tenant_id in tenant_ids]
