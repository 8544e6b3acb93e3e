"""
Routers FastAPI para caja.

- /cash-sessions: apertura, caja actual, cierre con arqueo, movimientos,
  historial y último cierre.
- /cash-movements: anulación de movimientos manuales.
"""
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.cash.service import CashSessionService
from app.modules.cash.schemas import (
    CashSessionOpen, CashSessionClose, CashSessionOut, CashSessionCloseResult,
    CashMovementCreate, CashMovementOut, CurrentCashSessionResponse, LastClosingResponse
)


cash_sessions_router = APIRouter(prefix="/cash-sessions", tags=["Cash"])
cash_movements_router = APIRouter(prefix="/cash-movements", tags=["Cash"])


@cash_sessions_router.post("/open", response_model=CashSessionOut, status_code=status.HTTP_201_CREATED)
async def open_cash_session(
    data: CashSessionOpen,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:apertura")),
    db: Session = Depends(get_db)
):
    """
    Abrir caja con un fondo inicial.

    Sólo puede haber una caja abierta por comercio; una segunda apertura
    responde 409.
    """
    service = CashSessionService(db)
    return service.open_session(auth_context.tenant_id, data.opening_amount, auth_context.user_id)


@cash_sessions_router.get("/current", response_model=CurrentCashSessionResponse)
async def get_current_cash_session(
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:ver")),
    db: Session = Depends(get_db)
):
    """Caja abierta con sus movimientos y saldo actual, o `session: null`."""
    service = CashSessionService(db)
    return {"session": service.get_current_session(auth_context.tenant_id)}


@cash_sessions_router.get("/history", response_model=List[CashSessionOut])
async def list_cash_session_history(
    limit: int = Query(10, ge=1, le=100),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:ver")),
    db: Session = Depends(get_db)
):
    service = CashSessionService(db)
    return service.list_closed_sessions(auth_context.tenant_id, limit=limit)


@cash_sessions_router.get("/last-closing", response_model=LastClosingResponse)
async def get_last_closing(
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:ver")),
    db: Session = Depends(get_db)
):
    """Monto del último cierre, sugerido como fondo de la próxima apertura."""
    service = CashSessionService(db)
    return {"amount": service.get_last_closing_amount(auth_context.tenant_id)}


@cash_sessions_router.post("/{session_id}/close", response_model=CashSessionCloseResult)
async def close_cash_session(
    session_id: UUID,
    data: CashSessionClose,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:apertura")),
    db: Session = Depends(get_db)
):
    """
    Cerrar caja con arqueo.

    - **expected**: apertura + ingresos - egresos
    - **counted**: efectivo declarado
    - **difference**: contado - esperado (negativo = faltante)
    """
    service = CashSessionService(db)
    return service.close_session(auth_context.tenant_id, session_id, data.counted_cash, auth_context.user_id)


@cash_sessions_router.post("/{session_id}/movements", response_model=CashMovementOut, status_code=status.HTTP_201_CREATED)
async def create_cash_movement(
    session_id: UUID,
    data: CashMovementCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:ingreso")),
    db: Session = Depends(get_db)
):
    service = CashSessionService(db)
    return service.record_movement(
        tenant_id=auth_context.tenant_id,
        session_id=session_id,
        movement_type=data.type,
        amount=data.amount,
        concept=data.concept,
        user_id=auth_context.user_id
    )


@cash_movements_router.delete("/{movement_id}", response_model=CashMovementOut)
async def reverse_cash_movement(
    movement_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("caja:ingreso")),
    db: Session = Depends(get_db)
):
    """
    Anular un movimiento manual. Devuelve el movimiento compensatorio creado;
    el original se conserva.
    """
    service = CashSessionService(db)
    return service.delete_movement(auth_context.tenant_id, movement_id, auth_context.user_id)
