"""
Modelos de caja: sesiones de caja por tenant y sus movimientos.

Sólo puede existir una sesión ABIERTA por tenant; lo garantiza un índice
único parcial, no una verificación previa.
"""
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Numeric, Enum, Uuid, Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship
from uuid import uuid4
from decimal import Decimal
from datetime import datetime, timezone
import enum

from app.database.database import Base
from app.common.mixins import TenantMixin, TimestampMixin


def _utcnow():
    return datetime.now(timezone.utc)


class CashSessionStatus(str, enum.Enum):
    OPEN = "ABIERTA"
    CLOSED = "CERRADA"


class CashMovementType(str, enum.Enum):
    INCOME = "INGRESO"
    EXPENSE = "EGRESO"


class CashSession(Base, TenantMixin, TimestampMixin):
    __tablename__ = "cash_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    status = Column(
        Enum(CashSessionStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False, default=CashSessionStatus.OPEN, index=True
    )

    opening_amount = Column(Numeric(15, 2), nullable=False, default=0)
    closing_amount = Column(Numeric(15, 2), nullable=True)   # Efectivo contado al cerrar
    expected_amount = Column(Numeric(15, 2), nullable=True)  # Apertura + ingresos - egresos
    difference = Column(Numeric(15, 2), nullable=True)       # Contado - esperado

    opened_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    opened_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    closed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    movements = relationship(
        "CashMovement", back_populates="session",
        order_by="CashMovement.created_at.desc()"
    )

    __table_args__ = (
        Index(
            "uq_cash_session_one_open_per_tenant", "tenant_id",
            unique=True,
            postgresql_where=text("status = 'ABIERTA'"),
            sqlite_where=text("status = 'ABIERTA'")
        ),
        CheckConstraint("opening_amount >= 0", name="ck_cash_session_opening_non_negative"),
    )

    @property
    def running_balance(self) -> Decimal:
        """Saldo actual: apertura + ingresos - egresos"""
        total = Decimal(self.opening_amount or 0)
        for movement in self.movements:
            total += movement.signed_amount
        return total


class CashMovement(Base, TenantMixin):
    """Movimiento de caja inmutable. Se anula con un movimiento compensatorio."""
    __tablename__ = "cash_movements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(Uuid(as_uuid=True), ForeignKey("cash_sessions.id"), nullable=False, index=True)
    type = Column(
        Enum(CashMovementType, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    amount = Column(Numeric(15, 2), nullable=False)
    concept = Column(String(255), nullable=False)
    reference = Column(String(100), nullable=True, index=True)  # Venta o pago que lo originó
    reversal_of_id = Column(Uuid(as_uuid=True), ForeignKey("cash_movements.id"), nullable=True, unique=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    session = relationship("CashSession", back_populates="movements")
    reversal_of = relationship("CashMovement", remote_side=[id])

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cash_movement_amount_positive"),
    )

    @property
    def signed_amount(self) -> Decimal:
        amount = Decimal(self.amount or 0)
        return amount if self.type == CashMovementType.INCOME else -amount
