from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, desc
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from app.common.cache import schedule_view_invalidation
from app.common.exceptions import (
    DomainError, ConflictError, InvalidReference, NotFound, PolicyViolation, TransactionAborted
)
from app.modules.cash.service import CashSessionService
from app.modules.customers.models import Customer, AccountMovement, AccountMovementType
from app.modules.customers.schemas import CustomerCreate, CustomerUpdate

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("EFECTIVO", "TRANSFERENCIA", "OTRO")


class ReceivableLedger:
    """
    Cuenta corriente: cada cambio de Customer.balance va junto con un
    AccountMovement. Sólo hace flush; el commit es de quien llama.
    """

    def __init__(self, db: Session):
        self.db = db

    def post(self, tenant_id: UUID, customer_id: UUID, movement_type: AccountMovementType,
             amount: Decimal, concept: str, reference: Optional[str] = None,
             user_id: Optional[UUID] = None) -> AccountMovement:
        if amount is None or amount <= 0:
            raise PolicyViolation("El monto debe ser mayor a cero")

        delta = amount if movement_type == AccountMovementType.DEBIT else -amount
        updated = self.db.query(Customer).filter(
            Customer.id == customer_id,
            Customer.tenant_id == tenant_id,
            Customer.deleted_at.is_(None)
        ).update({Customer.balance: Customer.balance + delta}, synchronize_session="fetch")
        if updated == 0:
            raise InvalidReference("Cliente no encontrado")

        movement = AccountMovement(
            tenant_id=tenant_id,
            customer_id=customer_id,
            type=movement_type,
            amount=amount,
            concept=concept,
            reference=reference,
            created_by=user_id
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def post_sale_debit(self, tenant_id: UUID, customer_id: UUID, sale_id: UUID, total: Decimal,
                        user_id: Optional[UUID] = None) -> AccountMovement:
        return self.post(
            tenant_id, customer_id, AccountMovementType.DEBIT, total,
            concept=f"Venta registrada: #{str(sale_id).split('-')[0].upper()}",
            reference=str(sale_id),
            user_id=user_id
        )


class CustomerService:
    """Servicio de clientes y cobranzas de cuenta corriente"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = ReceivableLedger(db)

    def _get_customer(self, tenant_id: UUID, customer_id: UUID) -> Customer:
        customer = self.db.query(Customer).filter(
            Customer.id == customer_id,
            Customer.tenant_id == tenant_id,
            Customer.deleted_at.is_(None)
        ).first()
        if not customer:
            raise NotFound("Cliente no encontrado")
        return customer

    def get_customer(self, tenant_id: UUID, customer_id: UUID) -> Customer:
        return self._get_customer(tenant_id, customer_id)

    def list_customers(self, tenant_id: UUID, search: Optional[str] = None,
                       limit: int = 100, offset: int = 0) -> dict:
        query = self.db.query(Customer).filter(
            Customer.tenant_id == tenant_id,
            Customer.deleted_at.is_(None)
        )
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.tax_id.ilike(pattern)
            ))

        total = query.count()
        customers = query.order_by(desc(Customer.created_at)).offset(offset).limit(limit).all()
        return {"customers": customers, "total": total, "limit": limit, "offset": offset}

    def create_customer(self, tenant_id: UUID, data: CustomerCreate) -> Customer:
        try:
            customer = Customer(tenant_id=tenant_id, balance=Decimal("0"), **data.model_dump())
            self.db.add(customer)
            self.db.commit()
            self.db.refresh(customer)
            return customer

        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Error de integridad al crear el cliente")
        except Exception as e:
            self.db.rollback()
            logger.exception("Error creating customer")
            raise TransactionAborted(f"Error al crear cliente: {str(e)}")

    def update_customer(self, tenant_id: UUID, customer_id: UUID, data: CustomerUpdate) -> Customer:
        customer = self._get_customer(tenant_id, customer_id)

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(customer, field, value)

        try:
            self.db.commit()
            self.db.refresh(customer)
            return customer
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Integrity error updating customer {customer_id}: {e.orig}")
            raise ConflictError("Los datos del cliente violan una restricción de integridad")
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error updating customer {customer_id}")
            raise TransactionAborted(f"Error al actualizar cliente: {str(e)}")

    def delete_customer(self, tenant_id: UUID, customer_id: UUID) -> dict:
        """Baja lógica; no se permite con saldo pendiente."""
        customer = self._get_customer(tenant_id, customer_id)
        if Decimal(customer.balance or 0) != 0:
            raise ConflictError("El cliente tiene saldo en cuenta corriente")

        customer.soft_delete()
        self.db.commit()
        return {"message": "Cliente eliminado correctamente"}

    def register_payment(self, tenant_id: UUID, customer_id: UUID, amount: Decimal, method: str,
                         concept: Optional[str] = None, user_id: Optional[UUID] = None) -> dict:
        """
        Registrar un pago a cuenta en una sola transacción.

        Crea el movimiento CREDITO y descuenta el saldo. Si el pago es en
        EFECTIVO y hay caja abierta, también registra el ingreso en caja;
        sin caja abierta el pago se registra igual, sin rastro en caja.
        """
        if method not in PAYMENT_METHODS:
            raise PolicyViolation(f"Método de pago no permitido para cobros: {method}")
        if amount is None or amount <= 0:
            raise PolicyViolation("El monto debe ser mayor a cero")

        concept = (concept or "").strip() or "Pago a cuenta"

        try:
            self._get_customer(tenant_id, customer_id)

            payment = self.ledger.post(
                tenant_id, customer_id, AccountMovementType.CREDIT, amount,
                concept=concept, user_id=user_id
            )

            cash_movement = None
            if method == "EFECTIVO":
                cash_movement = CashSessionService(self.db).add_income_if_open(
                    tenant_id, amount,
                    concept=f"Cobro Cta. Cte.: {concept}"[:255],
                    reference=str(payment.id),
                    user_id=user_id
                )

            self.db.commit()
            self.db.refresh(payment)
            customer = self._get_customer(tenant_id, customer_id)

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error registering payment for customer {customer_id}")
            raise TransactionAborted(f"Error al registrar el pago: {str(e)}")

        logger.info(f"Payment of {amount} registered for customer {customer_id} (tenant {tenant_id})")
        views = ["clientes", "caja"] if cash_movement else ["clientes"]
        schedule_view_invalidation(tenant_id, views)
        return {
            "movement": payment,
            "balance": customer.balance,
            "cash_movement_id": cash_movement.id if cash_movement else None
        }

    def get_statement(self, tenant_id: UUID, customer_id: UUID, limit: int = 50) -> dict:
        """Últimos movimientos de cuenta corriente y saldo actual."""
        customer = self._get_customer(tenant_id, customer_id)
        movements = self.db.query(AccountMovement).filter(
            AccountMovement.customer_id == customer.id,
            AccountMovement.tenant_id == tenant_id
        ).order_by(desc(AccountMovement.created_at)).limit(limit).all()

        return {
            "customer_id": customer.id,
            "balance": customer.balance,
            "movements": movements
        }
