from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Numeric, Enum, Integer, Uuid, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from uuid import uuid4
from datetime import datetime, timezone
import enum

from app.database.database import Base
from app.common.mixins import TenantMixin, TimestampMixin


class PaymentMethod(str, enum.Enum):
    CASH = "EFECTIVO"
    CARD = "TARJETA"
    TRANSFER = "TRANSFERENCIA"
    ACCOUNT = "CUENTA_CORRIENTE"
    OTHER = "OTRO"


class SaleStatus(str, enum.Enum):
    COMPLETED = "COMPLETADA"


class Sale(Base, TenantMixin, TimestampMixin):
    """
    Venta confirmada.

    `idempotency_key` es opcional y único por tenant: un reintento con la
    misma clave devuelve la venta original.
    """
    __tablename__ = "sales"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    date = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    total = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, native_enum=False, length=30, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    status = Column(
        Enum(SaleStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False, default=SaleStatus.COMPLETED
    )
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    idempotency_key = Column(String(100), nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    lines = relationship("SaleLine", back_populates="sale", cascade="all, delete-orphan")
    customer = relationship("Customer")

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_sale_tenant_idempotency_key"),
    )


class SaleLine(Base, TenantMixin):
    __tablename__ = "sale_lines"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)  # Con IVA y descuento aplicados
    subtotal = Column(Numeric(15, 2), nullable=False)

    sale = relationship("Sale", back_populates="lines")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_line_quantity_positive"),
    )
