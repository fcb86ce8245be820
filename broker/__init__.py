"""
RabbitMQ wrapper driven by json configuration files.

- RabbitMQ: connection, channel and queue management, publishing
- Receiver: background thread forwarding a queue's messages into a queue.Queue

Usage:
    rmq = RabbitMQ(load_rabbitmq("rabbitmq.json"))
    rmq.connect()
    rmq.init_queue(load_queue_definition("queue.json"))

    rmq.send("hello")

    messages = queue.Queue()
    rmq.receive(messages)
    text = messages.get()

    rmq.disconnect()
"""

from .exceptions import (
    BrokerCloseError,
    BrokerConnectionError,
    BrokerError,
    BrokerNotConnectedError,
    ConsumeError,
    PublishError,
    PublishTimeoutError,
    QueueDeclareError,
    QueueNotDeclaredError,
)
from .rabbitmq import RabbitMQ
from .receiver import Receiver

__all__ = [
    "RabbitMQ",
    "Receiver",
    "BrokerError",
    "BrokerConnectionError",
    "BrokerNotConnectedError",
    "BrokerCloseError",
    "QueueDeclareError",
    "QueueNotDeclaredError",
    "PublishError",
    "PublishTimeoutError",
    "ConsumeError",
]
