# -*- coding: utf-8 -*-
"""Resolución y confirmación de entregas."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app_entregas.core.dependencies import ROL_CLIENTE, Usuario
from app_entregas.core.errors import AlreadyConfirmed, InvalidCode, PermissionDenied, ReconciliationFailure
from app_entregas.services.stock_client import ReconciliationReport, reconcile
from app_entregas.sql import crud
from app_entregas.sql.schemas import ConfirmacionResultado, DeliveryRecord, ReconciliacionOut, ResolucionEntrega

logger = logging.getLogger(__name__)

READY = "ready"
ALREADY_CONFIRMED = "already_confirmed"
ERROR = "error"
SUCCESS = "success"

# Reconciliation tasks outliving a cancelled request are kept referenced here.
_background_tasks = set()


async def resolve(db: AsyncSession, codigo: str, pedido_id) -> ResolucionEntrega:
    """Clasifica un par (codigo, pedido) en ready / already_confirmed / error.

    Never raises: a store failure is logged and classified as error.
    """
    if not codigo or pedido_id is None or str(pedido_id) == "":
        return ResolucionEntrega(estado=ERROR)
    try:
        pendiente = await crud.find_pending(db, codigo, pedido_id)
        if pendiente is not None:
            estado = ALREADY_CONFIRMED if pendiente.confirmada else READY
            return ResolucionEntrega(estado=estado, entrega=DeliveryRecord.model_validate(pendiente))

        confirmada = await crud.find_confirmed(db, codigo, pedido_id)
        if confirmada is not None:
            return ResolucionEntrega(estado=ALREADY_CONFIRMED, entrega=DeliveryRecord.model_validate(confirmada))
    except SQLAlchemyError:
        logger.exception("[ENTREGAS] Error consultando la entrega %s", codigo)
    return ResolucionEntrega(estado=ERROR)


def check_can_confirm(usuario: Optional[Usuario]):
    if usuario is None:
        raise PermissionDenied("Debes iniciar sesión como cliente para confirmar la entrega",
                               authenticated=False)
    if usuario.rol != ROL_CLIENTE:
        raise PermissionDenied("Solo los clientes pueden confirmar entregas")


async def _reconcile_and_report(stock_client, entrega: DeliveryRecord, cliente_id,
                                on_reconciliation_failure, on_confirmed) -> ReconciliationReport:
    report = await reconcile(stock_client, entrega.pedido_id, entrega.productos, cliente_id)
    if not report.completa:
        fallo = ReconciliationFailure(entrega.pedido_id, report.fallidos)
        logger.warning("[ENTREGAS] ⚠️ %s", fallo.message)
        if on_reconciliation_failure is not None:
            await _notify(on_reconciliation_failure, {
                "codigo_entrega": entrega.codigo_entrega,
                "pedido_id": entrega.pedido_id,
                "cliente_id": cliente_id,
                "productos": [p.model_dump() for p in fallo.fallidos],
                "intento": 1,
            })
    if on_confirmed is not None:
        await _notify(on_confirmed, entrega.model_dump(mode="json"))
    return report


async def _reconcile_shielded(stock_client, entrega: DeliveryRecord, cliente_id,
                              on_reconciliation_failure=None, on_confirmed=None) -> ReconciliationReport:
    """Run reconciliation and its event hand-offs so that cancelling the caller does not cancel them."""
    task = asyncio.ensure_future(
        _reconcile_and_report(stock_client, entrega, cliente_id, on_reconciliation_failure, on_confirmed)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return await asyncio.shield(task)


async def confirm(db: AsyncSession, codigo: str, pedido_id, usuario: Optional[Usuario], stock_client,
                  on_reconciliation_failure: Callable[[dict], Awaitable] = None,
                  on_confirmed: Callable[[dict], Awaitable] = None) -> ConfirmacionResultado:
    """Confirma la entrega y acredita el stock del cliente.

    Raises PermissionDenied, InvalidCode or AlreadyConfirmed before anything is
    written. Once the record has moved to confirmed the result is always
    success; an incomplete stock credit is reported in ``advertencia`` and
    handed to ``on_reconciliation_failure`` for retry.
    """
    check_can_confirm(usuario)

    resolucion = await resolve(db, codigo, pedido_id)
    if resolucion.estado == ERROR:
        raise InvalidCode(codigo)
    if resolucion.estado == ALREADY_CONFIRMED:
        raise AlreadyConfirmed(codigo, resolucion.entrega)

    if resolucion.entrega.cliente_id not in (None, "0", usuario.id):
        logger.warning("[ENTREGAS] La entrega %s estaba asignada al cliente %s y la confirma %s",
                       codigo, resolucion.entrega.cliente_id, usuario.id)

    # compare-and-move; a concurrent confirmation makes this raise AlreadyConfirmed
    db_confirmada = await crud.move_to_confirmed(
        db,
        codigo,
        fecha_confirmacion=datetime.now(timezone.utc),
        cliente_confirmo=usuario.id,
        pedido_id=pedido_id,
    )
    entrega = DeliveryRecord.model_validate(db_confirmada)
    logger.info("[ENTREGAS] ✅ Entrega %s del pedido %s confirmada", codigo, entrega.pedido_id)

    # no await between the commit and the shielded task
    report = await _reconcile_shielded(stock_client, entrega, usuario.id,
                                       on_reconciliation_failure, on_confirmed)
    advertencia = None
    if not report.completa:
        advertencia = ReconciliationFailure(entrega.pedido_id, report.fallidos).message

    return ConfirmacionResultado(
        estado=SUCCESS,
        entrega=entrega,
        reconciliacion=ReconciliacionOut(
            metodo=report.metodo,
            acreditados=report.acreditados,
            fallidos=report.fallidos,
        ),
        advertencia=advertencia,
    )


async def _notify(callback, payload: dict):
    """Publishing problems are logged; they never undo a confirmation."""
    try:
        await callback(payload)
    except Exception:
        logger.exception("[ENTREGAS] No se pudo publicar el evento de la entrega %s",
                         payload.get("codigo_entrega"))
