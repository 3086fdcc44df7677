# -*- coding: utf-8 -*-
"""FastAPI dependencies: database session and current user."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app_entregas.core import config
from app_entregas.core.database import SessionLocal

logger = logging.getLogger(__name__)

ROL_ADMIN = "admin"
ROL_CLIENTE = "cliente"
ROL_DEPOSITO = "deposito"
ROL_FLETE = "flete"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Usuario:
    """Authenticated caller, as carried by the auth service token."""
    id: str
    rol: str
    email: Optional[str] = None


async def get_db():
    """Yield an AsyncSession and close it afterwards."""
    async with SessionLocal() as db:
        yield db


def check_public_key() -> bool:
    return os.path.isfile(config.PUBLIC_KEY_PATH)


def read_public_key() -> str:
    with open(config.PUBLIC_KEY_PATH, "r", encoding="utf-8") as f:
        return f.read()


def decode_token(token: str, public_key: str) -> Usuario:
    """Decode a token issued by the auth service. Raises jwt.InvalidTokenError."""
    payload = jwt.decode(token, public_key, algorithms=[config.JWT_ALGORITHM])
    if "id" not in payload or "tipoUsuario" not in payload:
        raise jwt.InvalidTokenError("Token sin id o tipoUsuario")
    return Usuario(id=str(payload["id"]), rol=payload["tipoUsuario"], email=payload.get("email"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Usuario]:
    """Return the caller or None when there is no valid token.

    Callers decide what an anonymous request means; the confirmation flow
    turns it into PermissionDenied with login-redirect semantics.
    """
    if credentials is None:
        return None
    if not check_public_key():
        logger.warning("[ENTREGAS] Clave pública de auth no disponible en %s", config.PUBLIC_KEY_PATH)
        return None
    try:
        return decode_token(credentials.credentials, read_public_key())
    except jwt.InvalidTokenError as exc:
        logger.info("[ENTREGAS] Token rechazado: %s", exc)
        return None
