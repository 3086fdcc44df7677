# -*- coding: utf-8 -*-
"""Database models definitions. Table representations as class."""
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, String

from app_entregas.core.database import BaseModel


class _EntregaColumns:
    """Columnas comunes a entregas pendientes y confirmadas."""
    codigo_entrega = Column(String(96), primary_key=True)
    pedido_id = Column(String(64), nullable=False, index=True)
    cliente_id = Column(String(64), nullable=True)
    deposito = Column(String(128), nullable=True)
    fecha = Column(DateTime(timezone=True), nullable=False)
    productos = Column(JSON, nullable=False, default=list)
    total = Column(Float, nullable=False, default=0)


class PendingDelivery(_EntregaColumns, BaseModel):
    """Tabla de entregas con comprobante emitido y aún sin confirmar"""
    __tablename__ = "entregas_pendientes"

    confirmada = Column(Boolean, nullable=False, default=False)


class ConfirmedDelivery(_EntregaColumns, BaseModel):
    """Registro de entregas confirmadas por el cliente. Solo se agregan filas."""
    __tablename__ = "entregas_confirmadas"

    confirmada = Column(Boolean, nullable=False, default=True)
    fecha_confirmacion = Column(DateTime(timezone=True), nullable=False)
    cliente_confirmo = Column(String(64), nullable=False)
