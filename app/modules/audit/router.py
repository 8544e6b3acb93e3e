from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.audit.service import ReconciliationService
from app.modules.audit.schemas import ReconciliationReport

audit_router = APIRouter(prefix="/audit", tags=["Audit"])


@audit_router.get("/reconciliation", response_model=ReconciliationReport)
async def get_reconciliation_report(
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("rep:ver")),
    db: Session = Depends(get_db)
):
    """
    Recalcular stock, cuentas corrientes y cajas contra sus movimientos y
    devolver las diferencias encontradas.
    """
    return ReconciliationService(db).reconcile(auth_context.tenant_id)
