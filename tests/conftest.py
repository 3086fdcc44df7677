# tests/conftest.py
import asyncio
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app_entregas.core.database import Base
from app_entregas.sql import models  # noqa: F401
from app_entregas.sql.schemas import ClienteIn, DepositoIn, PedidoIn, Producto


# =========================================
# Una base SQLite por test (archivo temporal)
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'entregas.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        yield sess


# =========================================
# Pedido de ejemplo: #42, cliente CLI-007, 2 líneas, total 2500
# =========================================
@pytest.fixture
def productos():
    return [
        Producto(nombre="Yerba Mate 1kg", cantidad=2, precio=750),
        Producto(nombre="Azúcar 1kg", cantidad=4, precio=250),
    ]


@pytest.fixture
def pedido(productos):
    return PedidoIn(
        id=42,
        cliente_id="CLI-007",
        cliente="Almacén Don Pepe",
        direccion="Calle Falsa 123, Rosario",
        tipo_envio="envio",
        deposito="Depósito Central",
        productos=productos,
        total=2500,
    )


@pytest.fixture
def cliente():
    return ClienteIn(id="CLI-007", nombre="Almacén Don Pepe")


@pytest.fixture
def deposito():
    return DepositoIn(nombre="Depósito Central", direccion="Av. Siempre Viva 742")


# =========================================
# Inventario falso: registra llamadas y falla a pedido
# =========================================
class FakeStockClient:
    """Inventory double. ``error`` replaces the default httpx failures; ``delay`` slows the bulk call."""

    def __init__(self, fail_bulk=False, fail_products=(), error=None, delay=0):
        self.fail_bulk = fail_bulk
        self.fail_products = set(fail_products)
        self.error = error
        self.delay = delay
        self.started = asyncio.Event()
        self.bulk_calls = []
        self.product_calls = []

    async def add_from_order(self, pedido_id, cliente_id):
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        self.bulk_calls.append((pedido_id, cliente_id))
        if self.fail_bulk:
            raise self.error or httpx.ConnectError("inventory unavailable")

    async def add_product(self, producto, cliente_id):
        self.product_calls.append((producto, cliente_id))
        if producto.nombre in self.fail_products:
            raise self.error or httpx.ReadTimeout("inventory timeout")


@pytest.fixture
def make_stock_client():
    return FakeStockClient


class Recorder:
    """Async callable that stores every payload it receives."""

    def __init__(self, fail=False, delay=0):
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def __call__(self, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append(payload)
        if self.fail:
            raise ConnectionError("broker unavailable")


@pytest.fixture
def make_recorder():
    return Recorder
