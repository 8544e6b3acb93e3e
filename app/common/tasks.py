"""
Background tasks shared by every module
"""
from app.core.celery import celery_app
from app.common.cache import bump_view_versions
import logging

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def invalidate_views(self, tenant_id: str, views: list):
    """
    Invalidate cached views for a tenant by bumping their version keys.
    """
    try:
        versions = bump_view_versions(tenant_id, views)
        logger.info(f"Views {views} invalidated for tenant {tenant_id}")
        return {"status": "success", "tenant_id": tenant_id, "versions": dict(zip(views, versions))}

    except Exception as e:
        logger.error(f"View invalidation failed for tenant {tenant_id}: {str(e)}")
        self.retry(countdown=30, max_retries=3)
