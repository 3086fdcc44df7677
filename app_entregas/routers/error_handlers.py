# -*- coding: utf-8 -*-
"""Map delivery errors to HTTP responses."""
import logging
from urllib.parse import quote, urlencode

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app_entregas.core.errors import AlreadyConfirmed, DuplicateCode, InvalidCode, PermissionDenied

logger = logging.getLogger(__name__)


def login_url(request: Request) -> str:
    """Login page that sends the user back to the confirmation page afterwards."""
    params = {k: request.query_params[k] for k in ("codigo", "pedido") if k in request.query_params}
    if not params:
        return "/auth/login"
    destino = "/confirmar-entrega?" + urlencode(params)
    return "/auth/login?redirect=" + quote(destino, safe="")


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(InvalidCode)
    async def invalid_code_handler(request: Request, exc: InvalidCode):
        logger.info("[ENTREGAS] %s", exc.message)
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "estado": "error",
                "detail": "El código de entrega no existe o ha expirado. "
                          "Contacta al depósito para obtener un nuevo comprobante.",
            },
        )

    @app.exception_handler(AlreadyConfirmed)
    async def already_confirmed_handler(request: Request, exc: AlreadyConfirmed):
        fecha = exc.fecha_confirmacion
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "estado": "already_confirmed",
                "detail": "Esta entrega ya fue confirmada anteriormente.",
                "fecha_confirmacion": fecha.isoformat() if fecha else None,
            },
        )

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied):
        if not exc.authenticated:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"estado": "error", "detail": exc.message, "login_url": login_url(request)},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"estado": "error", "detail": exc.message},
        )

    @app.exception_handler(DuplicateCode)
    async def duplicate_code_handler(request: Request, exc: DuplicateCode):
        logger.error("[ENTREGAS] %s", exc.message)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"estado": "error", "detail": exc.message},
        )
