# -*- coding: utf-8 -*-
"""RabbitMQ connection helpers."""
from aio_pika import ExchangeType, connect_robust

from app_entregas.core import config


async def get_channel():
    connection = await connect_robust(config.RABBITMQ_URL)
    channel = await connection.channel()
    return connection, channel


async def declare_exchange(channel):
    return await channel.declare_exchange(
        config.EXCHANGE_NAME,
        ExchangeType.TOPIC,
        durable=True,
    )


async def declare_exchange_logs(channel):
    return await channel.declare_exchange(
        config.EXCHANGE_LOGS_NAME,
        ExchangeType.TOPIC,
        durable=True,
    )
