# -*- coding: utf-8 -*-
"""Generación de códigos de entrega."""
import secrets
import string
import time

PREFIJO = "ENT"
SEPARADOR = "-"
LARGO_SUFIJO = 6
_ALFABETO = string.ascii_uppercase + string.digits


def generar_codigo_entrega(pedido_id, cliente_id=0) -> str:
    """Genera un código ENT-<pedido>-<cliente>-<ms>-<aleatorio>.

    Does not look at the store: uniqueness is probabilistic and the store
    rejects duplicates on insert.
    """
    if pedido_id is None or str(pedido_id) == "":
        raise ValueError("pedido_id es obligatorio para generar un código de entrega")
    if cliente_id is None or str(cliente_id) == "":
        cliente_id = 0
    timestamp = int(time.time() * 1000)
    sufijo = "".join(secrets.choice(_ALFABETO) for _ in range(LARGO_SUFIJO))
    return SEPARADOR.join([PREFIJO, str(pedido_id), str(cliente_id), str(timestamp), sufijo])
