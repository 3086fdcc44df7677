import asyncio
import logging

from app_entregas.broker.delivery_broker_service import RETRY_QUEUE, ROUTING_RETRY
from app_entregas.core.rabbitmq_core import declare_exchange, declare_exchange_logs, get_channel

logger = logging.getLogger(__name__)


async def setup_rabbitmq():
    connection, channel = await get_channel()
    try:
        exchange = await declare_exchange(channel)
        await declare_exchange_logs(channel)

        retry_queue = await channel.declare_queue(RETRY_QUEUE, durable=True)
        await retry_queue.bind(exchange, routing_key=ROUTING_RETRY)

        logger.info("✅ RabbitMQ configurado correctamente (exchanges + cola de reintentos).")
    finally:
        await connection.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(setup_rabbitmq())
