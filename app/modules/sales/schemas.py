from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.sales.models import PaymentMethod, SaleStatus


class SaleItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., ge=1)


class SaleCreate(BaseModel):
    """
    Venta desde el POS.

    El carrito vacío se valida en el servicio para devolver el mismo error de
    negocio que en cualquier otro punto de entrada.
    """
    items: List[SaleItemCreate] = Field(default_factory=list)
    customer_id: Optional[UUID] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=100)


class SaleLineOut(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    class Config:
        from_attributes = True


class SaleOut(BaseModel):
    id: UUID
    date: datetime
    total: Decimal
    payment_method: PaymentMethod
    status: SaleStatus
    customer_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None
    created_by: Optional[UUID] = None
    lines: List[SaleLineOut] = []

    class Config:
        from_attributes = True


class SaleRegistered(SaleOut):
    replayed: bool = False


class SaleList(BaseModel):
    sales: List[SaleOut]
    total: int
    limit: int
    offset: int
