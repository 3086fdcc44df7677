import asyncio
import json
import logging

from aio_pika import DeliveryMode, Message

from app_entregas.core import config
from app_entregas.core.rabbitmq_core import declare_exchange, declare_exchange_logs, get_channel
from app_entregas.services import retry_service

logger = logging.getLogger(__name__)

ROUTING_CONFIRMED = "entrega.confirmada"
ROUTING_RETRY = "stock.reconciliation.retry"
RETRY_QUEUE = "stock_reconciliation_retry_queue"


async def _publish(routing_key: str, payload: dict):
    connection, channel = await get_channel()
    try:
        exchange = await declare_exchange(channel)
        await exchange.publish(
            Message(
                body=json.dumps(payload, default=str).encode(),
                content_type="application/json",
                delivery_mode=DeliveryMode.PERSISTENT,
            ),
            routing_key=routing_key,
        )
    finally:
        await connection.close()


async def publish_delivery_confirmed(payload: dict):
    await _publish(ROUTING_CONFIRMED, payload)
    logger.info(f"[ENTREGAS] 📤 Publicado evento {ROUTING_CONFIRMED} → {payload.get('codigo_entrega')}")
    await publish_to_logger(
        message={
            "message": "Entrega confirmada",
            "codigo_entrega": payload.get("codigo_entrega"),
            "pedido_id": payload.get("pedido_id"),
        },
        topic="entregas.info",
    )


async def publish_reconciliation_retry(payload: dict):
    await _publish(ROUTING_RETRY, payload)
    logger.info(
        f"[ENTREGAS] 📤 Reintento {payload.get('intento')} de acreditación encolado → {payload.get('codigo_entrega')}"
    )
    await publish_to_logger(
        message={
            "message": "Acreditación de stock pendiente",
            "codigo_entrega": payload.get("codigo_entrega"),
            "pedido_id": payload.get("pedido_id"),
            "intento": payload.get("intento"),
            "productos": len(payload.get("productos", [])),
        },
        topic="entregas.warning",
    )


async def report_reconciliation_exhausted(payload: dict):
    await publish_to_logger(
        message={
            "message": "Reintentos de acreditación agotados",
            "codigo_entrega": payload.get("codigo_entrega"),
            "pedido_id": payload.get("pedido_id"),
            "cliente_id": payload.get("cliente_id"),
            "productos": payload.get("productos", []),
        },
        topic="entregas.error",
    )


async def consume_reconciliation_retries():
    try:
        logger.info("[ENTREGAS] 🔄 Iniciando consume_reconciliation_retries...")
        _, channel = await get_channel()
        await channel.set_qos(prefetch_count=1)

        exchange = await declare_exchange(channel)

        retry_queue = await channel.declare_queue(RETRY_QUEUE, durable=True)
        await retry_queue.bind(exchange, routing_key=ROUTING_RETRY)

        await retry_queue.consume(handle_reconciliation_retry)

        logger.info("[ENTREGAS] 🟢 Escuchando reintentos de acreditación de stock...")
        await publish_to_logger(
            message={"message": "🟢 Entregas escuchando reintentos de acreditación"},
            topic="entregas.info",
        )
        await asyncio.Future()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"[ENTREGAS] ❌ Error en consume_reconciliation_retries: {e}", exc_info=True)


async def handle_reconciliation_retry(message):
    async with message.process():
        data = json.loads(message.body)
        intento = int(data.get("intento", 1))
        await asyncio.sleep(config.RECONCILIATION_RETRY_DELAY * intento)
        await retry_service.retry_reconciliation(
            data,
            republish=publish_reconciliation_retry,
            report_exhausted=report_reconciliation_exhausted,
        )


async def publish_to_logger(message: dict, topic: str):
    """
    Envía un log estructurado al sistema de logs.
    """
    connection = None
    try:
        connection, channel = await get_channel()

        exchange = await declare_exchange_logs(channel)

        log_data = {
            "measurement": "logs",
            "service": topic.split('.')[0],   # 'entregas'
            "severity": topic.split('.')[1],  # 'info', 'warning', 'error'...
            **message
        }

        msg = Message(
            body=json.dumps(log_data, default=str).encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
        )

        await exchange.publish(message=msg, routing_key=topic)

    except Exception as e:
        logger.warning(f"[ENTREGAS] Error publishing to logger: {e}")
    finally:
        if connection:
            await connection.close()
