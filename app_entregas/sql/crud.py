# -*- coding: utf-8 -*-
"""Functions that interact with the database (delivery record store)."""
import logging

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app_entregas.core.errors import AlreadyConfirmed, DuplicateCode, InvalidCode
from . import models

logger = logging.getLogger(__name__)


async def add_pending(db: AsyncSession, record: dict):
    """Inserta una entrega pendiente. Falla si el código ya existe en cualquiera de los dos conjuntos."""
    codigo = record["codigo_entrega"]
    if await db.get(models.PendingDelivery, codigo) is not None:
        raise DuplicateCode(codigo)
    if await find_confirmed(db, codigo) is not None:
        raise DuplicateCode(codigo)

    values = dict(record)
    values["pedido_id"] = str(values["pedido_id"])
    if values.get("cliente_id") is not None:
        values["cliente_id"] = str(values["cliente_id"])
    values["confirmada"] = False

    db_entrega = models.PendingDelivery(**values)
    db.add(db_entrega)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateCode(codigo) from exc
    await db.refresh(db_entrega)
    logger.info("[ENTREGAS] Entrega pendiente %s registrada para pedido %s", codigo, values["pedido_id"])
    return db_entrega


async def find_pending(db: AsyncSession, codigo: str, pedido_id=None):
    """Busca una entrega pendiente por código, opcionalmente verificando el pedido."""
    stmt = select(models.PendingDelivery).where(models.PendingDelivery.codigo_entrega == codigo)
    if pedido_id is not None:
        stmt = stmt.where(models.PendingDelivery.pedido_id == str(pedido_id))
    return await get_element_statement_result(db, stmt)


async def find_confirmed(db: AsyncSession, codigo: str, pedido_id=None):
    """Busca una entrega confirmada por código."""
    stmt = select(models.ConfirmedDelivery).where(models.ConfirmedDelivery.codigo_entrega == codigo)
    if pedido_id is not None:
        stmt = stmt.where(models.ConfirmedDelivery.pedido_id == str(pedido_id))
    return await get_element_statement_result(db, stmt)


async def move_to_confirmed(db: AsyncSession, codigo: str, fecha_confirmacion, cliente_confirmo, pedido_id=None):
    """Mueve una entrega de pendientes a confirmadas en una sola transacción.

    The pending row is removed with DELETE ... RETURNING, guarded by
    confirmada = false, so two concurrent confirmations cannot both get the
    row: the loser deletes nothing and gets AlreadyConfirmed. This is the
    only code path that writes to entregas_confirmadas.
    """
    table = models.PendingDelivery.__table__
    stmt = (
        delete(models.PendingDelivery)
        .where(models.PendingDelivery.codigo_entrega == codigo)
        .where(models.PendingDelivery.confirmada.is_(False))
    )
    if pedido_id is not None:
        stmt = stmt.where(models.PendingDelivery.pedido_id == str(pedido_id))
    stmt = stmt.returning(*table.columns).execution_options(synchronize_session=False)

    result = await db.execute(stmt)
    row = result.mappings().first()
    if row is None:
        await db.rollback()
        ya_confirmada = await find_confirmed(db, codigo, pedido_id)
        if ya_confirmada is not None:
            raise AlreadyConfirmed(codigo, ya_confirmada)
        raise InvalidCode(codigo)

    values = dict(row)
    values["confirmada"] = True
    values["fecha_confirmacion"] = fecha_confirmacion
    values["cliente_confirmo"] = str(cliente_confirmo)
    db_confirmada = models.ConfirmedDelivery(**values)
    db.add(db_confirmada)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise AlreadyConfirmed(codigo, await find_confirmed(db, codigo)) from exc

    # no refresh: all columns come from the returned row and commit stays the last await
    logger.info("[ENTREGAS] Entrega %s confirmada por cliente %s", codigo, cliente_confirmo)
    return db_confirmada


async def list_by_order(db: AsyncSession, pedido_id):
    """Devuelve (pendientes, confirmadas) de un pedido."""
    pedido_id = str(pedido_id)
    pendientes = await get_list_statement_result(
        db,
        select(models.PendingDelivery)
        .where(models.PendingDelivery.pedido_id == pedido_id)
        .order_by(models.PendingDelivery.fecha),
    )
    confirmadas = await get_list_statement_result(
        db,
        select(models.ConfirmedDelivery)
        .where(models.ConfirmedDelivery.pedido_id == pedido_id)
        .order_by(models.ConfirmedDelivery.fecha_confirmacion),
    )
    return pendientes, confirmadas


# Generic functions ################################################################################
async def get_list_statement_result(db: AsyncSession, stmt):
    """Execute given statement and return list of items."""
    result = await db.execute(stmt)
    item_list = result.unique().scalars().all()
    return item_list


async def get_element_statement_result(db: AsyncSession, stmt):
    """Execute statement and return a single items"""
    result = await db.execute(stmt)
    item = result.scalar()
    return item
