from datetime import datetime, timezone
from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload
import logging

from app.modules.auth.models import User
from app.modules.auth.permissions import resolve_permissions, roles_for_user
from app.modules.auth.schemas import LoginRequest, TokenResponse, MeOut
from app.modules.auth.utils import verify_password, create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)


class AuthService:
    """Servicio de autenticación multi-tenant."""

    def __init__(self, db: Session):
        self.db = db

    def login(self, login_data: LoginRequest) -> TokenResponse:
        """Validar credenciales y emitir un token con el tenant del usuario."""
        user = self.db.query(User).filter(User.email == login_data.email).first()

        if not user or not verify_password(login_data.password, user.password):
            logger.info(f"Failed login attempt for {login_data.email}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Email o contraseña incorrectos",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Usuario inactivo"
            )

        user.last_login = datetime.now(timezone.utc)
        self.db.commit()

        token = create_access_token({"sub": str(user.id), "tenant_id": str(user.tenant_id)})
        return TokenResponse(access_token=token, expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60)

    def get_me(self, user: User) -> MeOut:
        user = self.db.query(User).options(selectinload(User.role)).filter(User.id == user.id).first()
        permissions = resolve_permissions(roles_for_user(user))
        return MeOut(
            user_id=user.id,
            tenant_id=user.tenant_id,
            email=user.email,
            name=user.name,
            user_role=user.legacy_role,
            dynamic_role=user.role.name if user.role else None,
            permissions=sorted(permissions)
        )
