from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import datetime

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.sales.service import SaleService
from app.modules.sales.schemas import SaleCreate, SaleRegistered, SaleOut, SaleList

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("/", response_model=SaleRegistered, status_code=status.HTTP_201_CREATED)
async def register_sale(
    data: SaleCreate,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Registrar una venta desde el POS.

    - **items**: productos y cantidades (los repetidos se suman)
    - **customer_id**: cliente opcional; aplica su descuento especial
    - **payment_method**: EFECTIVO exige caja abierta; CUENTA_CORRIENTE exige
      un cliente con cuenta corriente habilitada
    - **idempotency_key**: un reintento con la misma clave devuelve la venta
      original con `replayed=true`
    """
    return SaleService(db).register_sale(auth_context, data)


@sales_router.get("/", response_model=SaleList)
async def list_sales(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    date_from: Optional[datetime] = Query(None, description="Desde (inclusive)"),
    date_to: Optional[datetime] = Query(None, description="Hasta (inclusive)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("vta:acceso")),
    db: Session = Depends(get_db)
):
    return SaleService(db).list_sales(
        auth_context.tenant_id, limit=limit, offset=offset, date_from=date_from, date_to=date_to
    )


@sales_router.get("/{sale_id}", response_model=SaleOut)
async def get_sale(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("vta:acceso")),
    db: Session = Depends(get_db)
):
    return SaleService(db).get_sale(auth_context.tenant_id, sale_id)
