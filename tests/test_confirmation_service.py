# tests/test_confirmation_service.py
import asyncio
import re

import pytest

from app_entregas.core.dependencies import Usuario
from app_entregas.core.errors import AlreadyConfirmed, InvalidCode, PermissionDenied
from app_entregas.services.artifact_builder import build_comprobante
from app_entregas.services import confirmation_service
from app_entregas.services.confirmation_service import confirm, resolve
from app_entregas.sql import crud

CLIENTE = Usuario(id="CLI-007", rol="cliente")


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_resolve_pendiente_es_ready(session, pedido, cliente, deposito):
    comprobante = await build_comprobante(session, pedido, cliente, deposito)
    resolucion = await resolve(session, comprobante.codigo_entrega, "42")
    assert resolucion.estado == "ready"
    assert resolucion.entrega.codigo_entrega == comprobante.codigo_entrega
    assert resolucion.entrega.confirmada is False


@pytest.mark.asyncio
async def test_resolve_codigo_desconocido_es_error(session):
    resolucion = await resolve(session, "ENT-1-1-1-NOPE00", "1")
    assert resolucion.estado == "error"
    assert resolucion.entrega is None


@pytest.mark.asyncio
async def test_resolve_pedido_que_no_coincide_es_error(session, pedido, cliente, deposito):
    comprobante = await build_comprobante(session, pedido, cliente, deposito)
    resolucion = await resolve(session, comprobante.codigo_entrega, "43")
    assert resolucion.estado == "error"


@pytest.mark.asyncio
async def test_resolve_confirmada_con_otro_pedido_es_error(session, pedido, make_stock_client):
    comprobante = await build_comprobante(session, pedido)
    await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, make_stock_client())

    resolucion = await resolve(session, comprobante.codigo_entrega, "43")
    assert resolucion.estado == "error"
    assert resolucion.entrega is None
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "already_confirmed"


@pytest.mark.asyncio
async def test_resolve_pendiente_marcada_confirmada_es_already_confirmed(session, pedido):
    comprobante = await build_comprobante(session, pedido)
    pendiente = await crud.find_pending(session, comprobante.codigo_entrega)
    pendiente.confirmada = True
    await session.commit()

    resolucion = await resolve(session, comprobante.codigo_entrega, "42")
    assert resolucion.estado == "already_confirmed"


@pytest.mark.asyncio
@pytest.mark.parametrize("codigo, pedido_id", [
    ("", "42"),
    ("ENT-42", None),
    ("ENT-42", ""),
    ("' OR 1=1 --", "42"),
    ("ENT-42-CLI-007-0-XXXXXX", "no-es-numero"),
    ("x" * 500, "42"),
])
async def test_resolve_siempre_clasifica(session, pedido, codigo, pedido_id):
    await build_comprobante(session, pedido)
    resolucion = await resolve(session, codigo, pedido_id)
    assert resolucion.estado == "error"


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_escenario_a_confirmacion_exitosa(session, pedido, cliente, deposito, make_stock_client):
    comprobante = await build_comprobante(session, pedido, cliente, deposito)
    assert re.fullmatch(r"ENT-42-CLI-007-\d{13}-[A-Z0-9]{6}", comprobante.codigo_entrega)
    stock = make_stock_client()

    resultado = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock)

    assert resultado.estado == "success"
    assert resultado.entrega.confirmada is True
    assert resultado.entrega.cliente_confirmo == "CLI-007"
    assert resultado.entrega.fecha_confirmacion is not None
    assert [p.nombre for p in resultado.entrega.productos] == ["Yerba Mate 1kg", "Azúcar 1kg"]
    assert resultado.reconciliacion.metodo == "bulk"
    assert resultado.advertencia is None
    assert stock.bulk_calls == [("42", "CLI-007")]
    assert stock.product_calls == []

    confirmada = await crud.find_confirmed(session, comprobante.codigo_entrega)
    assert confirmada.confirmada is True
    assert await crud.find_pending(session, comprobante.codigo_entrega) is None


@pytest.mark.asyncio
async def test_escenario_b_segunda_confirmacion_no_acredita(session, pedido, make_stock_client):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client()

    primero = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock)
    assert primero.estado == "success"

    with pytest.raises(AlreadyConfirmed) as exc_info:
        await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock)

    assert exc_info.value.fecha_confirmacion is not None
    assert len(stock.bulk_calls) == 1
    assert stock.product_calls == []
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "already_confirmed"


@pytest.mark.asyncio
async def test_escenario_c_codigo_nunca_generado(session, make_stock_client):
    stock = make_stock_client()
    with pytest.raises(InvalidCode):
        await confirm(session, "ENT-42-CLI-007-1718000000000-ZZZZZZ", "42", CLIENTE, stock)
    assert stock.bulk_calls == []


@pytest.mark.asyncio
async def test_escenario_d_sin_sesion(session, pedido, make_stock_client):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client()

    with pytest.raises(PermissionDenied) as exc_info:
        await confirm(session, comprobante.codigo_entrega, "42", None, stock)

    assert exc_info.value.authenticated is False
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "ready"
    assert stock.bulk_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("rol", ["flete", "deposito", "admin"])
async def test_solo_clientes_confirman(session, pedido, make_stock_client, rol):
    comprobante = await build_comprobante(session, pedido)

    with pytest.raises(PermissionDenied) as exc_info:
        await confirm(session, comprobante.codigo_entrega, "42", Usuario(id="9", rol=rol), make_stock_client())

    assert exc_info.value.authenticated is True
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "ready"


@pytest.mark.asyncio
async def test_escenario_e_respaldo_por_linea(session, pedido, make_stock_client, make_recorder):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client(fail_bulk=True)
    reintentos = make_recorder()

    resultado = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock,
                              on_reconciliation_failure=reintentos)

    assert resultado.estado == "success"
    assert resultado.reconciliacion.metodo == "fallback"
    assert len(stock.product_calls) == 2
    assert [p.model_dump() for p, _ in stock.product_calls] == [p.model_dump() for p in pedido.productos]
    assert all(cliente_id == "CLI-007" for _, cliente_id in stock.product_calls)
    assert resultado.advertencia is None
    assert reintentos.calls == []


@pytest.mark.asyncio
async def test_error_inesperado_del_inventario_usa_respaldo(session, pedido, make_stock_client, make_recorder):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client(fail_bulk=True, error=RuntimeError("inventory contract error"))
    reintentos = make_recorder()

    resultado = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock,
                              on_reconciliation_failure=reintentos)

    assert resultado.estado == "success"
    assert resultado.reconciliacion.metodo == "fallback"
    assert len(stock.product_calls) == 2
    assert resultado.advertencia is None
    assert reintentos.calls == []


@pytest.mark.asyncio
async def test_cancelar_la_peticion_no_corta_la_acreditacion(session, pedido, make_stock_client, make_recorder):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client(delay=0.2)
    confirmadas = make_recorder(delay=0.2)

    tarea = asyncio.create_task(confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock,
                                        on_confirmed=confirmadas))
    await asyncio.wait_for(stock.started.wait(), timeout=5)
    tarea.cancel()
    with pytest.raises(asyncio.CancelledError):
        await tarea
    assert stock.bulk_calls == []

    await asyncio.gather(*list(confirmation_service._background_tasks))

    assert stock.bulk_calls == [("42", "CLI-007")]
    assert len(confirmadas.calls) == 1
    assert confirmadas.calls[0]["codigo_entrega"] == comprobante.codigo_entrega
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "already_confirmed"


@pytest.mark.asyncio
async def test_falla_total_de_acreditacion_no_revierte(session, pedido, make_stock_client, make_recorder):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client(fail_bulk=True, fail_products={"Yerba Mate 1kg", "Azúcar 1kg"})
    reintentos = make_recorder()

    resultado = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock,
                              on_reconciliation_failure=reintentos)

    assert resultado.estado == "success"
    assert resultado.advertencia
    assert [p.nombre for p in resultado.reconciliacion.fallidos] == ["Yerba Mate 1kg", "Azúcar 1kg"]
    assert await crud.find_confirmed(session, comprobante.codigo_entrega) is not None

    assert len(reintentos.calls) == 1
    payload = reintentos.calls[0]
    assert payload["codigo_entrega"] == comprobante.codigo_entrega
    assert payload["pedido_id"] == "42"
    assert payload["cliente_id"] == "CLI-007"
    assert payload["intento"] == 1
    assert [p["nombre"] for p in payload["productos"]] == ["Yerba Mate 1kg", "Azúcar 1kg"]


@pytest.mark.asyncio
async def test_errores_de_publicacion_no_afectan_la_confirmacion(session, pedido, make_stock_client,
                                                                  make_recorder):
    comprobante = await build_comprobante(session, pedido)
    stock = make_stock_client(fail_bulk=True, fail_products={"Azúcar 1kg"})
    confirmadas = make_recorder(fail=True)
    reintentos = make_recorder(fail=True)

    resultado = await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock,
                              on_reconciliation_failure=reintentos, on_confirmed=confirmadas)

    assert resultado.estado == "success"
    assert len(confirmadas.calls) == 1
    assert confirmadas.calls[0]["codigo_entrega"] == comprobante.codigo_entrega
    assert [p["nombre"] for p in reintentos.calls[0]["productos"]] == ["Azúcar 1kg"]


@pytest.mark.asyncio
async def test_otra_sesion_confirmo_entre_resolver_y_confirmar(session, async_session_maker, pedido,
                                                               make_stock_client):
    comprobante = await build_comprobante(session, pedido)
    assert (await resolve(session, comprobante.codigo_entrega, "42")).estado == "ready"

    async with async_session_maker() as otro_dispositivo:
        await confirm(otro_dispositivo, comprobante.codigo_entrega, "42", CLIENTE, make_stock_client())

    stock = make_stock_client()
    with pytest.raises(AlreadyConfirmed):
        await crud.move_to_confirmed(session, comprobante.codigo_entrega,
                                     fecha_confirmacion=None, cliente_confirmo="CLI-007")
    with pytest.raises(AlreadyConfirmed):
        await confirm(session, comprobante.codigo_entrega, "42", CLIENTE, stock)
    assert stock.bulk_calls == []
