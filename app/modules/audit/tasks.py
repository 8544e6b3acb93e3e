"""
Background tasks for ledger reconciliation
"""
from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.audit.service import ReconciliationService
import logging

# Modelos referenciados por las relaciones
import app.modules.auth.models  # noqa: F401
import app.modules.sales.models  # noqa: F401

logger = logging.getLogger(__name__)


@celery_app.task
def reconcile_all_tenants():
    """
    Periodic task: recompute every tenant's ledgers and report drift
    """
    db = SessionLocal()
    try:
        logger.info("Starting ledger reconciliation")
        reports = ReconciliationService(db).reconcile_all()
        drifted = [str(r.tenant_id) for r in reports if r.has_drift]
        logger.info(f"Ledger reconciliation completed: {len(reports)} tenants, {len(drifted)} with drift")
        return {"status": "completed", "tenants": len(reports), "drifted": drifted}

    except Exception as e:
        logger.error(f"Ledger reconciliation failed: {str(e)}")
        raise
    finally:
        db.close()
