# -*- coding: utf-8 -*-
"""Errores del flujo de confirmación de entregas."""


class DeliveryError(Exception):
    """Base class for delivery confirmation errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidCode(DeliveryError):
    """El código no existe ni en pendientes ni en confirmadas."""

    def __init__(self, codigo: str):
        super().__init__(f"Código de entrega no válido: {codigo}")
        self.codigo = codigo


class AlreadyConfirmed(DeliveryError):
    """La entrega ya fue confirmada. Lleva el registro original."""

    def __init__(self, codigo: str, entrega=None):
        super().__init__(f"La entrega {codigo} ya fue confirmada")
        self.codigo = codigo
        self.entrega = entrega

    @property
    def fecha_confirmacion(self):
        return getattr(self.entrega, "fecha_confirmacion", None)


class PermissionDenied(DeliveryError):
    """Caller not authenticated, or authenticated with the wrong role."""

    def __init__(self, message: str, authenticated: bool = True):
        super().__init__(message)
        self.authenticated = authenticated


class DuplicateCode(DeliveryError):
    """A record with the same codigo_entrega already exists."""

    def __init__(self, codigo: str):
        super().__init__(f"Código de entrega duplicado: {codigo}")
        self.codigo = codigo


class ReconciliationFailure(DeliveryError):
    """Confirmation committed but stock crediting did not fully complete.

    Never raised past the executor; it travels as a warning on the result.
    """

    def __init__(self, pedido_id, fallidos):
        super().__init__(
            f"No se pudo acreditar el stock de {len(fallidos)} producto(s) del pedido {pedido_id}"
        )
        self.pedido_id = pedido_id
        self.fallidos = list(fallidos)
