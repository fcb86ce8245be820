import logging
import threading

from pika.exceptions import AMQPError

from broker.connection import open_connection
from broker.exceptions import ConsumeError


class Receiver(threading.Thread):
    """
    Background consumer that forwards every message of a queue into a queue.Queue.

    A pika BlockingConnection must only be driven by one thread. By default
    each receiver opens and owns its own connection. When given an existing
    connection (an exclusive queue only accepts consumers from the connection
    that declared it) the receiver opens a channel on it and drives it while
    running; other threads reach that connection through call_threadsafe().
    Messages are auto acknowledged and forwarded as text, nothing is retried.
    """

    def __init__(self, rabbitmq_config, queue_name, messages, connection=None):
        super().__init__(name=f"Receiver-{queue_name}", daemon=True)
        self.config = rabbitmq_config
        self.queue_name = queue_name
        self.messages = messages
        self.connection = connection
        self.owns_connection = connection is None
        self.channel = None
        self.consumer_tag = None
        self._lock = threading.Lock()
        self._stop_requested = False
        self.logger = logging.getLogger(__name__)

    def subscribe(self):
        """Open this receiver's channel and register the consumer, before the thread is started"""
        try:
            if self.owns_connection:
                self.connection, self.channel = open_connection(self.config)
            else:
                self.channel = self.connection.channel()

            self.consumer_tag = self.channel.basic_consume(
                queue=self.queue_name,
                on_message_callback=self._on_message,
                auto_ack=True,
                exclusive=False,
                arguments=None,
            )
            self.logger.info(
                "action: subscribe | result: success | queue: %s | consumer_tag: %s | shared_connection: %s",
                self.queue_name,
                self.consumer_tag,
                not self.owns_connection,
            )

        except (AMQPError, OSError, ValueError) as e:
            self.logger.error(
                "action: subscribe | result: fail | queue: %s | error: %s",
                self.queue_name,
                e,
            )
            self._close()
            raise ConsumeError(str(e)) from e

    def _on_message(self, channel, method, properties, body):
        self.logger.debug(
            "action: receive_message | result: success | queue: %s | body: %r",
            self.queue_name,
            body,
        )
        self.messages.put(body.decode("utf-8", errors="replace"))

    def run(self):
        """Consume until the subscription ends, errors out or stop() is called"""
        try:
            self.logger.info(
                "action: start_consuming | result: in_progress | queue: %s",
                self.queue_name,
            )
            self.channel.start_consuming()
            self.logger.info(
                "action: start_consuming | result: success | queue: %s | msg: subscription ended",
                self.queue_name,
            )

        except AMQPError as e:
            self.logger.error(
                "action: start_consuming | result: fail | queue: %s | error: %s",
                self.queue_name,
                e,
            )
        finally:
            self._close()

    def call_threadsafe(self, function, timeout):
        """
        Run function on the thread driving this receiver's connection and return its result

        Exceptions raised by function are raised again here. Raises
        TimeoutError if it hasn't run within timeout seconds.
        """
        done = threading.Event()
        outcome = {}

        def _call():
            try:
                outcome["result"] = function()
            except Exception as e:  # pylint: disable=broad-exception-caught
                outcome["error"] = e
            finally:
                done.set()

        self.connection.add_callback_threadsafe(_call)

        if not done.wait(timeout):
            raise TimeoutError(
                f"Connection of receiver {self.name} did not run the call within {timeout}s"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def stop(self):
        """Stop consuming, safe to call from any thread and more than once"""
        with self._lock:
            if self._stop_requested or not self.is_alive():
                return
            if not (self.connection and self.connection.is_open):
                return
            self._stop_requested = True

            try:
                self.connection.add_callback_threadsafe(self.channel.stop_consuming)
                self.logger.info(
                    "action: stop_consuming | result: success | queue: %s",
                    self.queue_name,
                )
            except AMQPError as e:
                self.logger.error(
                    "action: stop_consuming | result: fail | queue: %s | error: %s",
                    self.queue_name,
                    e,
                )

    def _close(self):
        """Close this receiver's channel, and its connection when it owns one"""
        with self._lock:
            try:
                if self.channel and self.channel.is_open:
                    self.channel.close()
                    self.logger.debug("action: receiver_channel_close | result: success")

                if self.owns_connection and self.connection and self.connection.is_open:
                    self.connection.close()
                    self.logger.debug("action: receiver_connection_close | result: success")

            except AMQPError as e:
                self.logger.error(
                    "action: receiver_close | result: fail | error: %s", e
                )
