from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.customers.service import CustomerService
from app.modules.customers.schemas import (
    CustomerCreate, CustomerUpdate, CustomerOut, CustomerList,
    PaymentCreate, PaymentResult, AccountStatement
)

customers_router = APIRouter(prefix="/customers", tags=["Customers"])


@customers_router.post("/", response_model=CustomerOut, status_code=status.HTTP_201_CREATED)
async def create_customer(
    data: CustomerCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:crear")),
    db: Session = Depends(get_db)
):
    return CustomerService(db).create_customer(auth_context.tenant_id, data)


@customers_router.get("/", response_model=CustomerList)
async def list_customers(
    search: Optional[str] = Query(None, description="Buscar por nombre, email o CUIT"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:ver")),
    db: Session = Depends(get_db)
):
    return CustomerService(db).list_customers(auth_context.tenant_id, search=search, limit=limit, offset=offset)


@customers_router.get("/{customer_id}", response_model=CustomerOut)
async def get_customer(
    customer_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:ver")),
    db: Session = Depends(get_db)
):
    return CustomerService(db).get_customer(auth_context.tenant_id, customer_id)


@customers_router.patch("/{customer_id}", response_model=CustomerOut)
async def update_customer(
    customer_id: UUID,
    data: CustomerUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:crear")),
    db: Session = Depends(get_db)
):
    return CustomerService(db).update_customer(auth_context.tenant_id, customer_id, data)


@customers_router.delete("/{customer_id}")
async def delete_customer(
    customer_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:eliminar")),
    db: Session = Depends(get_db)
):
    """Baja lógica. Responde 409 si el cliente tiene saldo pendiente."""
    return CustomerService(db).delete_customer(auth_context.tenant_id, customer_id)


@customers_router.post("/{customer_id}/payments", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
async def register_customer_payment(
    customer_id: UUID,
    data: PaymentCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:ctacte")),
    db: Session = Depends(get_db)
):
    """
    Registrar pago a cuenta corriente.

    - **method**: EFECTIVO, TRANSFERENCIA u OTRO
    - Los pagos en efectivo se reflejan en la caja abierta, si existe.
    """
    return CustomerService(db).register_payment(
        auth_context.tenant_id, customer_id, data.amount, data.method, data.concept, auth_context.user_id
    )


@customers_router.get("/{customer_id}/statement", response_model=AccountStatement)
async def get_customer_statement(
    customer_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cli:ver")),
    db: Session = Depends(get_db)
):
    """Últimos 50 movimientos de cuenta corriente y saldo actual."""
    return CustomerService(db).get_statement(auth_context.tenant_id, customer_id)
