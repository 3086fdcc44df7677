# -*- coding: utf-8 -*-
"""Reintentos de acreditación de stock para entregas ya confirmadas."""
import logging

from app_entregas.core import config
from app_entregas.services.stock_client import RECONCILIATION_ERRORS, StockReconciliationClient
from app_entregas.sql.schemas import Producto

logger = logging.getLogger(__name__)


async def retry_reconciliation(data: dict, stock_client=None, republish=None, report_exhausted=None):
    """Reintenta add_product para las líneas que quedaron sin acreditar.

    Items that fail again are handed to ``republish`` with ``intento + 1``
    until RECONCILIATION_MAX_RETRIES is reached; then ``report_exhausted``
    gets them for manual follow-up, as it does when republishing fails.
    Returns the still-failing items.
    """
    intento = int(data.get("intento", 1))
    cliente_id = data["cliente_id"]
    productos = [Producto.model_validate(p) for p in data.get("productos", [])]

    own_client = stock_client is None
    if own_client:
        stock_client = StockReconciliationClient()
    fallidos = []
    try:
        for producto in productos:
            try:
                await stock_client.add_product(producto, cliente_id)
            except RECONCILIATION_ERRORS as exc:
                logger.warning("[ENTREGAS] Reintento %s: '%s' del pedido %s sigue fallando: %r",
                               intento, producto.nombre, data.get("pedido_id"), exc)
                fallidos.append(producto)
            except Exception:
                logger.exception("[ENTREGAS] Reintento %s: error inesperado acreditando '%s' del pedido %s",
                                 intento, producto.nombre, data.get("pedido_id"))
                fallidos.append(producto)
    finally:
        if own_client:
            await stock_client.aclose()

    if not fallidos:
        logger.info("[ENTREGAS] Stock de la entrega %s acreditado en el reintento %s",
                    data.get("codigo_entrega"), intento)
        return fallidos

    pendiente = dict(data, productos=[p.model_dump() for p in fallidos], intento=intento + 1)
    if intento < config.RECONCILIATION_MAX_RETRIES:
        if republish is None:
            return fallidos
        try:
            await republish(pendiente)
            return fallidos
        except Exception:
            # the incoming message is acked regardless, so the items go to report_exhausted
            logger.exception("[ENTREGAS] No se pudo reencolar el reintento %s de la entrega %s",
                             intento + 1, data.get("codigo_entrega"))
    else:
        logger.error("[ENTREGAS] ❌ Se agotaron los reintentos de la entrega %s (%s producto(s) sin acreditar)",
                     data.get("codigo_entrega"), len(fallidos))
    if report_exhausted is not None:
        await report_exhausted(pendiente)
    return fallidos
