"""
Versiones de vistas cacheadas por tenant.

Cada vista (ventas, inventario, caja, dashboard...) tiene una clave de versión
en Redis; los lectores arman sus claves de caché con esa versión, así que
incrementarla invalida todo lo cacheado para la vista.
"""
from typing import Iterable, List
from uuid import UUID
import logging
import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

_client = None


def get_redis_client() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _client


def view_version_key(tenant_id, view: str) -> str:
    return f"views:{tenant_id}:{view}:version"


def get_view_version(tenant_id, view: str) -> int:
    value = get_redis_client().get(view_version_key(tenant_id, view))
    return int(value) if value else 0


def bump_view_versions(tenant_id, views: Iterable[str]) -> List[int]:
    """Incrementar en un solo pipeline la versión de cada vista."""
    client = get_redis_client()
    pipe = client.pipeline()
    for view in views:
        key = view_version_key(tenant_id, view)
        pipe.incr(key)
        pipe.expire(key, settings.CACHE_VIEW_TTL_SECONDS)
    results = pipe.execute()
    # incr y expire se alternan
    return results[0::2]


def schedule_view_invalidation(tenant_id: UUID, views: List[str]) -> None:
    """
    Encolar la invalidación después del commit.

    Un fallo del broker se registra y no afecta la operación ya confirmada.
    """
    from app.common.tasks import invalidate_views

    try:
        invalidate_views.delay(str(tenant_id), list(views))
    except Exception as e:
        logger.warning(f"Could not enqueue view invalidation for tenant {tenant_id}: {e}")
