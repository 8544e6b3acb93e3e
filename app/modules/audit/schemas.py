from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime


class StockDrift(BaseModel):
    product_id: UUID
    sku: str
    stock: int
    ledger_total: int


class ReceivableDrift(BaseModel):
    customer_id: UUID
    name: str
    balance: Decimal
    ledger_total: Decimal


class CashDrift(BaseModel):
    session_id: UUID
    recorded_expected: Decimal
    ledger_expected: Decimal


class ReconciliationReport(BaseModel):
    tenant_id: UUID
    checked_at: datetime
    products_checked: int
    customers_checked: int
    stock_drift: List[StockDrift] = []
    receivable_drift: List[ReceivableDrift] = []
    cash_drift: List[CashDrift] = []
    open_session_id: Optional[UUID] = None
    open_session_balance: Optional[Decimal] = None
    has_drift: bool = False

