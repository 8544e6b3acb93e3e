from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.dependencies import get_current_user
from app.modules.auth.models import User
from app.modules.auth.schemas import LoginRequest, TokenResponse, MeOut
from app.modules.auth.service import AuthService

auth_router = APIRouter()


@auth_router.post("/login", response_model=TokenResponse)
async def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """
    Iniciar sesión.

    El token emitido incluye `sub` (usuario) y `tenant_id` (comercio).
    """
    return AuthService(db).login(login_data)


@auth_router.get("/me", response_model=MeOut)
async def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Usuario autenticado con su rol y permisos resueltos."""
    return AuthService(db).get_me(user)
