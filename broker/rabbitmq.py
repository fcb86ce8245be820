import logging
import threading

import pika
from pika.exceptions import AMQPError, ConnectionBlockedTimeout

from broker.connection import open_connection
from broker.exceptions import (
    BrokerCloseError,
    BrokerConnectionError,
    BrokerNotConnectedError,
    ConsumeError,
    PublishError,
    PublishTimeoutError,
    QueueDeclareError,
    QueueNotDeclaredError,
)
from broker.receiver import Receiver
from common.config import QueueDefinition, RabbitMQConfig
from common.utils import CONTENT_TYPE, DEFAULT_EXCHANGE, SEND_TIMEOUT


class RabbitMQ:
    """
    Thin wrapper around one RabbitMQ connection, one channel and one queue.

    Follows the usual pattern:
    1. connect() opens the connection and the channel
    2. init_queue() declares the queue on that channel
    3. send() publishes text to the queue, receive() forwards its messages
       into a queue.Queue from a background thread
    4. disconnect() stops the receivers and closes everything

    Receivers normally open their own connection. An exclusive queue can only
    be consumed from the connection that declared it, so its receiver runs on
    this connection instead and, while it is alive, every other call on the
    connection is handed to the receiver thread.
    """

    def __init__(self, rabbitmq_config: RabbitMQConfig):
        self.config = rabbitmq_config
        self._connection = None
        self._channel = None
        self.queue_name = None
        self._exclusive = False
        self._receivers = []
        # Receiver currently driving self._connection, if any
        self._connection_owner = None
        # The publishing channel is shared by every caller thread
        self._channel_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def connection(self):
        return self._connection

    @property
    def channel(self):
        return self._channel

    @property
    def exclusive(self):
        """Whether the declared queue is exclusive to this connection"""
        return self._exclusive

    def connect(self):
        """Connect to the RabbitMQ instance and open the channel, closing any previous connection first"""
        if self._connection is not None:
            self.logger.info(
                "action: rabbitmq_connect | result: in_progress | msg: already connected, closing the previous connection"
            )
            self.disconnect()

        endpoint = self.config.endpoint()
        self.logger.info(
            "action: rabbitmq_connect | result: in_progress | endpoint: %s", endpoint
        )

        try:
            self._connection, self._channel = open_connection(self.config)
        except (AMQPError, OSError, ValueError) as e:
            self.logger.error(
                "action: rabbitmq_connect | result: fail | endpoint: %s | error: %s",
                endpoint,
                e,
            )
            raise BrokerConnectionError(str(e)) from e

        self.logger.info(
            "action: rabbitmq_connect | result: success | endpoint: %s", endpoint
        )

    def disconnect(self):
        """
        Stop every receiver, then close the channel and the connection

        The connection is closed even when closing the channel fails. If the
        connection itself can't be closed it is kept, so disconnect() can be
        called again.
        """
        if self._connection is None:
            raise BrokerNotConnectedError("disconnect called before connect")

        endpoint = self.config.endpoint()
        self.logger.info(
            "action: rabbitmq_disconnect | result: in_progress | endpoint: %s", endpoint
        )

        for receiver in self._receivers:
            receiver.stop()
        for receiver in self._receivers:
            receiver.join(timeout=SEND_TIMEOUT)

        channel_error = None
        try:
            if self._channel and self._channel.is_open:
                self._channel.close()
                self.logger.debug("action: channel_close | result: success")
        except AMQPError as e:
            channel_error = e
            self.logger.error(
                "action: channel_close | result: fail | endpoint: %s | error: %s",
                endpoint,
                e,
            )
        finally:
            self._channel = None

        try:
            if self._connection.is_open:
                self._connection.close()
                self.logger.debug("action: connection_close | result: success")
        except AMQPError as e:
            self.logger.error(
                "action: rabbitmq_disconnect | result: fail | endpoint: %s | error: %s",
                endpoint,
                e,
            )
            raise BrokerCloseError(str(e)) from e

        self._connection = None
        self._connection_owner = None
        self._receivers = []

        if channel_error is not None:
            self.logger.error(
                "action: rabbitmq_disconnect | result: fail | endpoint: %s | error: %s",
                endpoint,
                channel_error,
            )
            raise BrokerCloseError(str(channel_error)) from channel_error

        self.logger.info(
            "action: rabbitmq_disconnect | result: success | endpoint: %s", endpoint
        )

    def is_connected(self):
        """Check if the connection and the channel are active"""
        return bool(
            self._connection
            and self._connection.is_open
            and self._channel
            and self._channel.is_open
        )

    def _require_channel(self, action):
        if self._channel is None:
            self.logger.error(
                "action: %s | result: fail | error: not connected, call connect() first",
                action,
            )
            raise BrokerNotConnectedError(f"{action} called before connect")
        return self._channel

    def _require_queue(self, action):
        if self.queue_name is None:
            self.logger.error(
                "action: %s | result: fail | error: no queue declared, call init_queue() first",
                action,
            )
            raise QueueNotDeclaredError(f"{action} called before init_queue")
        return self.queue_name

    def _run_on_connection(self, function):
        """Run function here, or on the receiver thread while one drives the connection"""
        owner = self._connection_owner
        if owner is not None and owner.is_alive():
            return owner.call_threadsafe(function, SEND_TIMEOUT)
        return function()

    def init_queue(self, definition: QueueDefinition):
        """Declare the queue described by the definition on the current channel"""
        channel = self._require_channel("declare_queue")

        if definition.nowait:
            # BlockingChannel always waits for Declare-Ok
            self.logger.debug(
                "action: declare_queue | result: in_progress | queue: %s | msg: nowait ignored by the blocking adapter",
                definition.name,
            )

        def _declare():
            return channel.queue_declare(
                queue=definition.name,
                durable=definition.durable,
                exclusive=definition.exclusiv,
                auto_delete=definition.autodelete,
                arguments=None,
            )

        try:
            with self._channel_lock:
                result = self._run_on_connection(_declare)
        except (AMQPError, TimeoutError) as e:
            self.logger.error(
                "action: declare_queue | result: fail | queue: %s | msg: a problem occurred while creating a queue for the current channel | error: %s",
                definition.name,
                e,
            )
            raise QueueDeclareError(str(e)) from e

        # The broker picks the name when the definition leaves it empty
        self.queue_name = result.method.queue
        self._exclusive = definition.exclusiv
        self.logger.info(
            "action: declare_queue | result: success | queue: %s | durable: %s | exclusive: %s | auto_delete: %s",
            self.queue_name,
            definition.durable,
            definition.exclusiv,
            definition.autodelete,
        )

    def send(self, message: str):
        """Publish a text message to the declared queue, bounded by SEND_TIMEOUT seconds"""
        channel = self._require_channel("send")
        queue_name = self._require_queue("send")

        properties = pika.BasicProperties(content_type=CONTENT_TYPE)
        body = message.encode("utf-8")

        def _publish():
            channel.basic_publish(
                exchange=DEFAULT_EXCHANGE,
                routing_key=queue_name,
                body=body,
                properties=properties,
                mandatory=False,
            )

        if not self._channel_lock.acquire(timeout=SEND_TIMEOUT):
            self.logger.error(
                "action: send | result: fail | queue: %s | error: channel busy for more than %ss",
                queue_name,
                SEND_TIMEOUT,
            )
            raise PublishTimeoutError(
                f"Could not publish to {queue_name} within {SEND_TIMEOUT} seconds"
            )

        try:
            self._run_on_connection(_publish)
        except (ConnectionBlockedTimeout, TimeoutError) as e:
            self.logger.error(
                "action: send | result: fail | queue: %s | error: publish not done within %ss",
                queue_name,
                SEND_TIMEOUT,
            )
            raise PublishTimeoutError(str(e)) from e
        except AMQPError as e:
            self.logger.error(
                "action: send | result: fail | queue: %s | msg: a problem occurred while sending a message to rabbitmq | error: %s",
                queue_name,
                e,
            )
            raise PublishError(str(e)) from e
        finally:
            self._channel_lock.release()

        self.logger.debug("action: send | result: success | queue: %s", queue_name)

    def receive(self, messages) -> Receiver:
        """
        Start a background thread forwarding the queue's messages into `messages`

        `messages` is usually an unbounded queue.Queue. Read from it in as many
        threads as needed; every message is delivered to exactly one reader.
        Raises ConsumeError if the subscription can't be opened. An exclusive
        queue supports one running receiver at a time.
        """
        self._require_channel("receive")
        queue_name = self._require_queue("receive")

        if not self._exclusive:
            receiver = Receiver(self.config, queue_name, messages)
            receiver.subscribe()
            receiver.start()
            self._receivers.append(receiver)
            return receiver

        if self._connection_owner is not None and self._connection_owner.is_alive():
            self.logger.error(
                "action: subscribe | result: fail | queue: %s | error: exclusive queue already has a running receiver",
                queue_name,
            )
            raise ConsumeError(f"Exclusive queue {queue_name} already has a running receiver")

        receiver = Receiver(self.config, queue_name, messages, connection=self._connection)
        with self._channel_lock:
            receiver.subscribe()
            self._connection_owner = receiver
            receiver.start()
        self._receivers.append(receiver)
        return receiver
