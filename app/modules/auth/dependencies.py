"""
Dependencias de autenticación para FastAPI.
"""
from uuid import UUID
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session, selectinload
import jwt

from app.database.database import get_db
from app.common.exceptions import PermissionDenied
from app.modules.auth.models import User
from app.modules.auth.permissions import has_permission, resolve_permissions, roles_for_user
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import decode_token

# Security scheme
security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Obtener usuario actual desde token JWT."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="No se pudieron validar las credenciales",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(credentials.credentials)
        user_id = UUID(str(payload.get("sub")))
        tenant_id = UUID(str(payload.get("tenant_id")))
    except (jwt.PyJWTError, ValueError):
        raise credentials_exception

    user = db.query(User).options(
        selectinload(User.role)
    ).filter(User.id == user_id).first()

    if user is None or not user.is_active or user.tenant_id != tenant_id:
        raise credentials_exception

    return user


def get_auth_context(user: User = Depends(get_current_user)) -> AuthContext:
    """
    Resolver el contexto del request: rol heredado y rol dinámico se
    combinan en un único conjunto de permisos.
    """
    permissions = resolve_permissions(roles_for_user(user))
    return AuthContext(
        user_id=user.id,
        tenant_id=user.tenant_id,
        user_role=user.legacy_role,
        permissions=sorted(permissions)
    )


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    get_current_user = staticmethod(get_current_user)
    get_auth_context = staticmethod(get_auth_context)

    @staticmethod
    def require_permission(permission_key: str):
        """
        Dependencia para requerir una capacidad específica.
        """
        def permission_checker(auth_context: AuthContext = Depends(get_auth_context)):
            if not has_permission(auth_context.permissions, permission_key):
                raise PermissionDenied(f"Se requiere el permiso '{permission_key}'")
            return auth_context
        return permission_checker


require_permission = AuthDependencies.require_permission
