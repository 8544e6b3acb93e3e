from fastapi import APIRouter, Depends, Query, status
from uuid import UUID
from sqlalchemy.orm import Session

from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.database.database import get_db
from app.modules.inventory.service import StockLedgerService
from app.modules.inventory.schemas import StockAdjustment, StockMovementOut, StockMovementList

stock_router = APIRouter(prefix="/products", tags=["Stock Management"])


@stock_router.post("/{product_id}/adjust-stock", response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    product_id: UUID,
    adjustment: StockAdjustment,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("inv:ajustar"))
):
    """Ajuste manual de stock. El resultado nunca puede quedar negativo."""
    service = StockLedgerService(db)
    return service.adjust_stock(
        auth_context.tenant_id, product_id, adjustment.quantity, adjustment.notes, auth_context.user_id
    )


@stock_router.get("/{product_id}/movements", response_model=StockMovementList)
def list_product_movements(
    product_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("fil:ver"))
):
    """Kardex del producto, más reciente primero."""
    service = StockLedgerService(db)
    return service.list_movements(auth_context.tenant_id, product_id, limit=limit, offset=offset)
