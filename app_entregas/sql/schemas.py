# -*- coding: utf-8 -*-
"""Pydantic schemas for requests, responses and delivery records."""
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

EstadoResolucion = Literal["ready", "already_confirmed", "error"]
EstadoConfirmacion = Literal["success", "already_confirmed", "error"]
TipoEnvio = Literal["envio", "flete", "retiro"]


class Message(BaseModel):
    detail: Optional[str] = Field(examples=["error or success message"])


class Producto(BaseModel):
    """Línea de pedido tal como se copia al comprobante."""
    nombre: str = Field(description="Nombre del producto", examples=["Yerba 1kg"])
    cantidad: int = Field(ge=0, description="Unidades entregadas", examples=[2])
    precio: float = Field(ge=0, description="Precio unitario", examples=[750.0])

    @property
    def subtotal(self) -> float:
        return self.cantidad * self.precio


class DeliveryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    codigo_entrega: str = Field(description="Código único de entrega",
                                examples=["ENT-42-7-1718000000000-K3X9QZ"])
    pedido_id: str = Field(description="Id del pedido de origen", examples=["42"])
    cliente_id: Optional[str] = Field(default=None, description="Cliente que debe confirmar")
    deposito: Optional[str] = Field(default=None, description="Depósito de origen")
    fecha: datetime = Field(description="Fecha de emisión del comprobante")
    productos: List[Producto] = Field(default_factory=list)
    total: float = Field(description="Total del pedido al emitir el comprobante")
    confirmada: bool = Field(default=False)
    fecha_confirmacion: Optional[datetime] = None
    cliente_confirmo: Optional[str] = None


class ClienteIn(BaseModel):
    id: Optional[Union[int, str]] = Field(default=None, examples=[7])
    nombre: Optional[str] = Field(default=None, examples=["Almacén Don Pepe"])


class DepositoIn(BaseModel):
    nombre: Optional[str] = Field(default=None, examples=["Depósito Central"])
    direccion: Optional[str] = Field(default=None, examples=["Av. Siempre Viva 742"])


class PedidoIn(BaseModel):
    """Snapshot of a ready order, sent by the warehouse when printing the receipt."""
    id: Union[int, str] = Field(description="Id del pedido", examples=[42])
    cliente_id: Optional[Union[int, str]] = None
    cliente: Optional[str] = Field(default=None, description="Nombre del cliente en el pedido")
    direccion: Optional[str] = None
    tipo_envio: Optional[str] = Field(default=None, examples=["envio"])
    deposito: Optional[str] = None
    productos: List[Producto] = Field(default_factory=list)
    total: Optional[float] = Field(default=None, ge=0)


class ComprobanteRequest(BaseModel):
    pedido: PedidoIn
    cliente: Optional[ClienteIn] = None
    deposito: Optional[DepositoIn] = None


class ResolucionEntrega(BaseModel):
    estado: EstadoResolucion
    entrega: Optional[DeliveryRecord] = None


class ReconciliacionOut(BaseModel):
    metodo: Literal["bulk", "fallback"]
    acreditados: List[Producto] = Field(default_factory=list)
    fallidos: List[Producto] = Field(default_factory=list)


class ConfirmacionResultado(BaseModel):
    estado: EstadoConfirmacion
    entrega: DeliveryRecord
    reconciliacion: Optional[ReconciliacionOut] = None
    advertencia: Optional[str] = Field(
        default=None,
        description="Aviso no fatal: la entrega quedó confirmada pero el stock no se acreditó completo",
    )


class EstadoError(BaseModel):
    estado: EstadoConfirmacion
    detail: str
    fecha_confirmacion: Optional[datetime] = None
    login_url: Optional[str] = None


class EntregasPedido(BaseModel):
    pedido_id: str
    pendientes: List[DeliveryRecord] = Field(default_factory=list)
    confirmadas: List[DeliveryRecord] = Field(default_factory=list)
