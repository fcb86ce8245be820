import pika
from common.config import RabbitMQConfig
from common.utils import BLOCKED_CONNECTION_TIMEOUT, HEARTBEAT, VIRTUAL_HOST


def connection_parameters(config: RabbitMQConfig, blocked_connection_timeout=None):
    """
    Build pika connection parameters for amqp://<username>:<password>@<address>:<port>/

    An empty address or port falls back to localhost:5672

    Raises ValueError if the configured port is not a number
    """
    if blocked_connection_timeout is None:
        blocked_connection_timeout = BLOCKED_CONNECTION_TIMEOUT

    credentials = pika.PlainCredentials(config.username, config.decoded_password())
    return pika.ConnectionParameters(
        host=config.host(),
        port=config.port_number(),
        virtual_host=VIRTUAL_HOST,
        credentials=credentials,
        heartbeat=HEARTBEAT,
        blocked_connection_timeout=blocked_connection_timeout,
    )


def open_connection(config: RabbitMQConfig, blocked_connection_timeout=None):
    """Open a blocking connection and one channel on it"""
    parameters = connection_parameters(config, blocked_connection_timeout)
    connection = pika.BlockingConnection(parameters)
    try:
        channel = connection.channel()
    except Exception:
        if connection.is_open:
            connection.close()
        raise
    return connection, channel
