# -*- coding: utf-8 -*-
"""FastAPI router definitions."""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app_entregas.broker import delivery_broker_service
from app_entregas.core.dependencies import (
    ROL_ADMIN, ROL_DEPOSITO, Usuario, check_public_key, get_current_user, get_db,
)
from app_entregas.core.errors import PermissionDenied
from app_entregas.services import artifact_builder, confirmation_service
from app_entregas.services.stock_client import get_stock_client
from app_entregas.sql import crud, schemas

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/entregas"
)


@dataclass
class EventHooks:
    on_confirmed: Optional[Callable[[dict], Awaitable]] = None
    on_reconciliation_failure: Optional[Callable[[dict], Awaitable]] = None


def get_event_hooks() -> EventHooks:
    return EventHooks(
        on_confirmed=delivery_broker_service.publish_delivery_confirmed,
        on_reconciliation_failure=delivery_broker_service.publish_reconciliation_retry,
    )


def require_staff(usuario: Optional[Usuario]) -> Usuario:
    if usuario is None:
        raise PermissionDenied("Debes iniciar sesión", authenticated=False)
    if usuario.rol not in (ROL_DEPOSITO, ROL_ADMIN):
        raise PermissionDenied("Solo depósitos y administradores pueden emitir comprobantes")
    return usuario


@router.get(
    "/health",
    summary="Health check endpoint",
    response_model=schemas.Message,
)
async def health_check():
    """Endpoint to check if everything started correctly."""
    logger.debug("GET '/health' endpoint called.")
    if check_public_key():
        return {"detail": "OK"}
    else:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not available")


@router.post(
    "/comprobante",
    summary="Genera el comprobante PDF de entrega y registra la entrega pendiente",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
    tags=["Entregas"]
)
async def create_comprobante(
    body: schemas.ComprobanteRequest,
    db: AsyncSession = Depends(get_db),
    usuario: Optional[Usuario] = Depends(get_current_user),
):
    """Emite un comprobante con código y QR para un pedido listo."""
    require_staff(usuario)
    comprobante = await artifact_builder.build_comprobante(
        db,
        pedido=body.pedido,
        cliente=body.cliente,
        deposito=body.deposito,
    )
    return Response(
        content=comprobante.pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{comprobante.filename}"',
            "X-Codigo-Entrega": comprobante.codigo_entrega,
            "X-Url-Confirmacion": comprobante.url_confirmacion,
        },
    )


@router.get(
    "/confirmar-entrega",
    response_model=schemas.ResolucionEntrega,
    summary="Verifica el estado de un código de entrega",
    tags=["Entregas"]
)
async def get_estado_entrega(
    codigo: str = Query(..., description="Código de entrega leído del QR"),
    pedido: str = Query(..., description="Id del pedido, se usa para validar el código"),
    db: AsyncSession = Depends(get_db),
):
    """Clasifica el código: ready, already_confirmed o error."""
    return await confirmation_service.resolve(db, codigo, pedido)


@router.post(
    "/confirmar-entrega",
    response_model=schemas.ConfirmacionResultado,
    summary="Confirma la recepción y acredita el stock del cliente",
    responses={
        401: {"model": schemas.EstadoError},
        403: {"model": schemas.EstadoError},
        404: {"model": schemas.EstadoError},
        409: {"model": schemas.EstadoError},
    },
    tags=["Entregas"]
)
async def confirmar_entrega(
    codigo: str = Query(..., description="Código de entrega leído del QR"),
    pedido: str = Query(..., description="Id del pedido"),
    db: AsyncSession = Depends(get_db),
    usuario: Optional[Usuario] = Depends(get_current_user),
    stock_client=Depends(get_stock_client),
    hooks: EventHooks = Depends(get_event_hooks),
):
    """Confirma la entrega. Solo puede hacerlo un cliente autenticado."""
    return await confirmation_service.confirm(
        db,
        codigo,
        pedido,
        usuario,
        stock_client,
        on_reconciliation_failure=hooks.on_reconciliation_failure,
        on_confirmed=hooks.on_confirmed,
    )


@router.get(
    "/pedido/{pedido_id}",
    response_model=schemas.EntregasPedido,
    summary="Entregas pendientes y confirmadas de un pedido",
    tags=["Entregas"]
)
async def get_entregas_pedido(
    pedido_id: str,
    db: AsyncSession = Depends(get_db),
    usuario: Optional[Usuario] = Depends(get_current_user),
):
    """Lista los códigos emitidos para un pedido (reimpresiones, soporte)."""
    require_staff(usuario)
    pendientes, confirmadas = await crud.list_by_order(db, pedido_id)
    return schemas.EntregasPedido(
        pedido_id=pedido_id,
        pendientes=[schemas.DeliveryRecord.model_validate(e) for e in pendientes],
        confirmadas=[schemas.DeliveryRecord.model_validate(e) for e in confirmadas],
    )
