"""
Modelos de clientes y cuenta corriente.

`Customer.balance` es la deuda actual (positivo = el cliente debe) y siempre
debe ser igual a Σ DEBITO - Σ CREDITO de sus AccountMovement.
"""
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, Uuid, CheckConstraint
)
from sqlalchemy.orm import relationship
from uuid import uuid4
from decimal import Decimal
from datetime import datetime, timezone
import enum

from app.database.database import Base
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin


class AccountMovementType(str, enum.Enum):
    DEBIT = "DEBITO"    # Aumenta la deuda (venta a cuenta corriente)
    CREDIT = "CREDITO"  # Disminuye la deuda (pago)


class Customer(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "customers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    tax_id = Column(String(20), nullable=True, index=True)  # CUIT / DNI
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    tax_condition = Column(String(50), nullable=False, default="CONSUMIDOR_FINAL")

    has_current_account = Column(Boolean, nullable=False, default=False)
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    credit_limit = Column(Numeric(15, 2), nullable=True)
    special_discount = Column(Numeric(5, 2), nullable=False, default=0)  # Porcentaje

    movements = relationship(
        "AccountMovement", back_populates="customer",
        order_by="AccountMovement.created_at.desc()"
    )

    __table_args__ = (
        CheckConstraint("special_discount >= 0 AND special_discount <= 100", name="ck_customer_discount_range"),
    )


class AccountMovement(Base, TenantMixin):
    """Movimiento inmutable de cuenta corriente"""
    __tablename__ = "account_movements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    type = Column(
        Enum(AccountMovementType, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    amount = Column(Numeric(15, 2), nullable=False)
    concept = Column(String(255), nullable=False)
    reference = Column(String(100), nullable=True, index=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    customer = relationship("Customer", back_populates="movements")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_account_movement_amount_positive"),
    )

    @property
    def signed_amount(self) -> Decimal:
        amount = Decimal(self.amount or 0)
        return amount if self.type == AccountMovementType.DEBIT else -amount
