"""
Servicio de caja.

Estados de una sesión: sin sesión -> ABIERTA -> CERRADA (terminal).

- CashSessionService: apertura, cierre con arqueo, movimientos manuales y su
  anulación por movimiento compensatorio.
- Los métodos `add_*` sólo hacen flush y los usan ventas y cobros dentro de
  su propia transacción.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import case, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.common.cache import schedule_view_invalidation
from app.common.exceptions import (
    DomainError, AlreadyOpen, AlreadyClosed, NotFound, NoOpenCashSession,
    PolicyViolation, TransactionAborted
)
from app.modules.cash.models import CashSession, CashMovement, CashSessionStatus, CashMovementType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class CashSessionService:
    """Servicio para gestión de sesiones de caja"""

    def __init__(self, db: Session):
        self.db = db

    def _find_open_session(self, tenant_id: UUID) -> Optional[CashSession]:
        return self.db.query(CashSession).filter(
            CashSession.tenant_id == tenant_id,
            CashSession.status == CashSessionStatus.OPEN
        ).order_by(desc(CashSession.opened_at)).first()

    def _get_owned_session(self, tenant_id: UUID, session_id: UUID) -> CashSession:
        session = self.db.query(CashSession).filter(
            CashSession.id == session_id,
            CashSession.tenant_id == tenant_id
        ).first()
        if not session:
            raise NotFound("Caja no encontrada")
        return session

    def compute_expected(self, session: CashSession) -> Decimal:
        """Apertura + Σ ingresos - Σ egresos, calculado en la base."""
        income, expense = self.db.query(
            func.coalesce(func.sum(case((CashMovement.type == CashMovementType.INCOME, CashMovement.amount), else_=0)), 0),
            func.coalesce(func.sum(case((CashMovement.type == CashMovementType.EXPENSE, CashMovement.amount), else_=0)), 0)
        ).filter(
            CashMovement.session_id == session.id,
            CashMovement.tenant_id == session.tenant_id
        ).one()
        expected = Decimal(session.opening_amount or 0) + Decimal(income) - Decimal(expense)
        return expected.quantize(CENT)

    def add_movement(self, session: CashSession, movement_type: CashMovementType, amount: Decimal,
                     concept: str, reference: Optional[str] = None, user_id: Optional[UUID] = None,
                     reversal_of_id: Optional[UUID] = None) -> CashMovement:
        movement = CashMovement(
            tenant_id=session.tenant_id,
            session_id=session.id,
            type=movement_type,
            amount=amount,
            concept=concept,
            reference=reference,
            reversal_of_id=reversal_of_id,
            created_by=user_id
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def add_sale_income(self, tenant_id: UUID, sale_id: UUID, total: Decimal,
                        user_id: Optional[UUID] = None) -> Optional[CashMovement]:
        """Ingreso por venta en efectivo; exige una caja abierta."""
        session = self._find_open_session(tenant_id)
        if not session:
            raise NoOpenCashSession()
        if total <= 0:
            return None
        return self.add_movement(
            session, CashMovementType.INCOME, total,
            concept=f"Venta #{str(sale_id).split('-')[0].upper()}",
            reference=str(sale_id),
            user_id=user_id
        )

    def add_income_if_open(self, tenant_id: UUID, amount: Decimal, concept: str,
                           reference: Optional[str] = None, user_id: Optional[UUID] = None) -> Optional[CashMovement]:
        """Ingreso opcional: sin caja abierta no se deja rastro en caja."""
        session = self._find_open_session(tenant_id)
        if not session:
            return None
        return self.add_movement(session, CashMovementType.INCOME, amount, concept, reference, user_id)

    def open_session(self, tenant_id: UUID, opening_amount: Decimal, user_id: Optional[UUID] = None) -> CashSession:
        """Abrir caja. Sólo una caja abierta por comercio."""
        if opening_amount is None or opening_amount < 0:
            raise PolicyViolation("El monto de apertura no puede ser negativo")

        try:
            if self._find_open_session(tenant_id):
                raise AlreadyOpen()

            session = CashSession(
                tenant_id=tenant_id,
                status=CashSessionStatus.OPEN,
                opening_amount=opening_amount,
                opened_by=user_id
            )
            self.db.add(session)
            self.db.commit()
            self.db.refresh(session)

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            # Otra apertura concurrente ganó el índice único parcial
            self.db.rollback()
            raise AlreadyOpen()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error opening cash session for tenant {tenant_id}")
            raise TransactionAborted(f"Error al abrir caja: {str(e)}")

        logger.info(f"Cash session {session.id} opened for tenant {tenant_id}")
        schedule_view_invalidation(tenant_id, ["caja"])
        return session

    def get_current_session(self, tenant_id: UUID) -> Optional[CashSession]:
        """
        Obtener la caja abierta actual con sus movimientos (más reciente primero).

        Retorna None si no hay caja abierta.
        """
        return self.db.query(CashSession).options(
            selectinload(CashSession.movements)
        ).filter(
            CashSession.tenant_id == tenant_id,
            CashSession.status == CashSessionStatus.OPEN
        ).order_by(desc(CashSession.opened_at)).first()

    def close_session(self, tenant_id: UUID, session_id: UUID, counted_cash: Decimal,
                      user_id: Optional[UUID] = None) -> dict:
        """Cerrar caja con arqueo: persiste esperado, contado y diferencia."""
        if counted_cash is None or counted_cash < 0:
            raise PolicyViolation("El monto contado no puede ser negativo")

        try:
            session = self._get_owned_session(tenant_id, session_id)
            if session.status == CashSessionStatus.CLOSED:
                raise AlreadyClosed()

            expected = self.compute_expected(session)
            counted = Decimal(counted_cash).quantize(CENT)
            difference = counted - expected

            # Sólo cierra si sigue abierta
            updated = self.db.query(CashSession).filter(
                CashSession.id == session.id,
                CashSession.status == CashSessionStatus.OPEN
            ).update({
                CashSession.status: CashSessionStatus.CLOSED,
                CashSession.closing_amount: counted,
                CashSession.expected_amount: expected,
                CashSession.difference: difference,
                CashSession.closed_at: datetime.now(timezone.utc),
                CashSession.closed_by: user_id
            }, synchronize_session="fetch")
            if updated == 0:
                raise AlreadyClosed()

            self.db.commit()

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error closing cash session {session_id}")
            raise TransactionAborted(f"Error al cerrar caja: {str(e)}")

        if difference != 0:
            logger.warning(f"Cash session {session_id} closed with difference {difference} (tenant {tenant_id})")
        schedule_view_invalidation(tenant_id, ["caja"])
        return {
            "session_id": session_id,
            "expected": expected,
            "counted": counted,
            "difference": difference
        }

    def record_movement(self, tenant_id: UUID, session_id: UUID, movement_type: CashMovementType,
                        amount: Decimal, concept: str, user_id: Optional[UUID] = None) -> CashMovement:
        """
        Registrar ingreso o egreso manual en una caja abierta.

        Los movimientos manuales nunca llevan referencia: la referencia marca
        los ingresos generados por ventas y cobros.
        """
        if not concept or not concept.strip():
            raise PolicyViolation("El concepto es obligatorio")
        if amount is None or amount <= 0:
            raise PolicyViolation("El monto debe ser mayor a cero")

        try:
            session = self.db.query(CashSession).filter(
                CashSession.id == session_id,
                CashSession.tenant_id == tenant_id,
                CashSession.status == CashSessionStatus.OPEN
            ).first()
            if not session:
                raise NotFound("Caja no encontrada o cerrada")

            movement = self.add_movement(session, movement_type, amount, concept.strip(), user_id=user_id)
            self.db.commit()
            self.db.refresh(movement)

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error recording cash movement in session {session_id}")
            raise TransactionAborted(f"Error al registrar movimiento: {str(e)}")

        schedule_view_invalidation(tenant_id, ["caja"])
        return movement

    def delete_movement(self, tenant_id: UUID, movement_id: UUID, user_id: Optional[UUID] = None) -> CashMovement:
        """
        Anular un movimiento manual con un movimiento compensatorio de signo
        contrario. No se borra nada físicamente.

        No se pueden anular movimientos vinculados a una venta o pago, ni
        anulaciones, ni movimientos ya anulados, ni movimientos de una caja
        cerrada.
        """
        try:
            movement = self.db.query(CashMovement).filter(
                CashMovement.id == movement_id,
                CashMovement.tenant_id == tenant_id
            ).first()
            if not movement:
                raise NotFound("Movimiento no encontrado")

            if movement.reference:
                raise PolicyViolation("El movimiento está vinculado a una operación y no puede anularse")
            if movement.reversal_of_id:
                raise PolicyViolation("Una anulación no puede anularse")

            already_reversed = self.db.query(CashMovement.id).filter(
                CashMovement.reversal_of_id == movement.id
            ).first()
            if already_reversed:
                raise PolicyViolation("El movimiento ya fue anulado")

            session = movement.session
            if session.status != CashSessionStatus.OPEN:
                raise PolicyViolation("La caja del movimiento está cerrada")

            opposite = (
                CashMovementType.EXPENSE if movement.type == CashMovementType.INCOME
                else CashMovementType.INCOME
            )
            reversal = self.add_movement(
                session, opposite, movement.amount,
                concept=f"Anulación: {movement.concept}"[:255],
                user_id=user_id,
                reversal_of_id=movement.id
            )
            self.db.commit()
            self.db.refresh(reversal)

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            # reversal_of_id es único: otra anulación concurrente ganó
            self.db.rollback()
            raise PolicyViolation("El movimiento ya fue anulado")
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error reversing cash movement {movement_id}")
            raise TransactionAborted(f"Error al anular el movimiento: {str(e)}")

        schedule_view_invalidation(tenant_id, ["caja"])
        return reversal

    def list_closed_sessions(self, tenant_id: UUID, limit: int = 10) -> List[CashSession]:
        """Historial de cajas cerradas, más reciente primero."""
        return self.db.query(CashSession).filter(
            CashSession.tenant_id == tenant_id,
            CashSession.status == CashSessionStatus.CLOSED
        ).order_by(desc(CashSession.opened_at)).limit(limit).all()

    def get_last_closing_amount(self, tenant_id: UUID) -> Decimal:
        """Monto contado en el último cierre; sugerido como fondo de la próxima apertura."""
        session = self.db.query(CashSession).filter(
            CashSession.tenant_id == tenant_id,
            CashSession.status == CashSessionStatus.CLOSED
        ).order_by(desc(CashSession.closed_at)).first()
        if not session or session.closing_amount is None:
            return Decimal("0")
        return Decimal(session.closing_amount)
