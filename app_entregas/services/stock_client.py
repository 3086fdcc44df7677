# -*- coding: utf-8 -*-
"""Cliente del servicio de inventario para acreditar stock al cliente."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

import httpx

from app_entregas.core import config
from app_entregas.sql.schemas import Producto

logger = logging.getLogger(__name__)

RECONCILIATION_ERRORS = (httpx.HTTPError, asyncio.TimeoutError)


class StockReconciliationClient:
    """HTTP client for the inventory service stock endpoints.

    Every call is bounded by ``timeout`` seconds in total; a timeout surfaces
    as asyncio.TimeoutError and is handled exactly like an HTTP failure.
    """

    def __init__(self, base_url: str = None, timeout: float = None, token: str = None,
                 transport: httpx.AsyncBaseTransport = None):
        self.base_url = base_url or config.INVENTORY_SERVICE_URL
        self.timeout = timeout if timeout is not None else config.RECONCILIATION_TIMEOUT
        token = config.INVENTORY_SERVICE_TOKEN if token is None else token
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def add_from_order(self, pedido_id, cliente_id) -> None:
        """Acredita todas las líneas de un pedido entregado (camino preferido)."""
        response = await asyncio.wait_for(
            self._client.post(
                f"/stock/agregar-desde-pedido/{pedido_id}",
                headers={"X-Cliente-Id": str(cliente_id)},
            ),
            timeout=self.timeout,
        )
        if response.status_code == httpx.codes.CONFLICT:
            # inventory already holds the lines of this order
            logger.info("[ENTREGAS] Pedido %s ya estaba acreditado en el stock", pedido_id)
            return
        response.raise_for_status()

    async def add_product(self, producto: Producto, cliente_id) -> None:
        """Acredita una sola línea (camino de respaldo)."""
        response = await asyncio.wait_for(
            self._client.post(
                "/stock/agregar",
                json=producto.model_dump(),
                headers={"X-Cliente-Id": str(cliente_id)},
            ),
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class ReconciliationReport:
    metodo: str
    acreditados: List[Producto] = field(default_factory=list)
    fallidos: List[Producto] = field(default_factory=list)

    @property
    def completa(self) -> bool:
        return not self.fallidos


async def reconcile(client, pedido_id, productos, cliente_id) -> ReconciliationReport:
    """Acredita el pedido en bloque y, si falla, línea por línea.

    Fallback calls are made once per line item, in order, whatever the
    outcome of the previous one.
    """
    productos = [p if isinstance(p, Producto) else Producto.model_validate(p) for p in productos]
    try:
        await client.add_from_order(pedido_id, cliente_id)
        logger.info("[ENTREGAS] Stock del pedido %s acreditado en bloque", pedido_id)
        return ReconciliationReport(metodo="bulk", acreditados=productos)
    except RECONCILIATION_ERRORS as exc:
        logger.warning("[ENTREGAS] Falló la acreditación en bloque del pedido %s: %r", pedido_id, exc)
    except Exception:
        logger.exception("[ENTREGAS] Error inesperado en la acreditación en bloque del pedido %s", pedido_id)

    report = ReconciliationReport(metodo="fallback")
    for producto in productos:
        try:
            await client.add_product(producto, cliente_id)
            report.acreditados.append(producto)
        except RECONCILIATION_ERRORS as exc:
            logger.error("[ENTREGAS] No se pudo acreditar '%s' del pedido %s: %r",
                         producto.nombre, pedido_id, exc)
            report.fallidos.append(producto)
        except Exception:
            logger.exception("[ENTREGAS] Error inesperado acreditando '%s' del pedido %s",
                             producto.nombre, pedido_id)
            report.fallidos.append(producto)
    return report


_shared_client = None


def get_stock_client() -> StockReconciliationClient:
    """Process-wide client; shielded reconciliations may outlive the request that started them."""
    global _shared_client
    if _shared_client is None:
        _shared_client = StockReconciliationClient()
    return _shared_client


async def close_stock_client():
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
