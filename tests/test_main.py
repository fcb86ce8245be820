import queue
import threading
import unittest
from unittest import mock

import main
from broker import BrokerConnectionError


class FakeReceiverRabbitMQ:
    """Stand-in whose receive() preloads messages and returns an already finished receiver"""

    def __init__(self, preloaded):
        self.preloaded = preloaded
        self.receiver = mock.Mock()
        self.receiver.is_alive.return_value = False

    def receive(self, messages):
        for message in self.preloaded:
            messages.put(message)
        return self.receiver


class TestRunSend(unittest.TestCase):

    def test_sends_non_empty_lines(self):
        rabbitmq = mock.Mock()

        sent = main.run_send(rabbitmq, ["first\n", "\n", "second"])

        self.assertEqual(sent, 2)
        self.assertEqual(
            rabbitmq.send.call_args_list, [mock.call("first"), mock.call("second")]
        )


class TestRunReceive(unittest.TestCase):

    def test_drains_messages_until_subscription_ends(self):
        rabbitmq = FakeReceiverRabbitMQ(["a", "b"])

        with mock.patch("main.POLL_INTERVAL", 0.01):
            received = main.run_receive(rabbitmq, threading.Event())

        self.assertEqual(received, 2)

    def test_stops_on_shutdown_request(self):
        rabbitmq = FakeReceiverRabbitMQ(["a"])
        rabbitmq.receiver.is_alive.return_value = True
        shutdown_event = threading.Event()
        shutdown_event.set()

        received = main.run_receive(rabbitmq, shutdown_event)

        self.assertEqual(received, 0)


class TestMain(unittest.TestCase):

    def test_configuration_error_exits_with_failure(self):
        with mock.patch("main.initialize_config", side_effect=KeyError("MODE")):
            self.assertEqual(main.main(), 1)

    def test_broker_error_exits_with_failure(self):
        app_config = mock.Mock(mode="send", logging_level="INFO")
        with mock.patch("main.initialize_config", return_value=app_config), \
                mock.patch("main.initialize_log"), \
                mock.patch("main.load_rabbitmq"), \
                mock.patch("main.load_queue_definition"), \
                mock.patch("main.RabbitMQ") as rabbitmq_cls:
            rabbitmq = rabbitmq_cls.return_value
            rabbitmq.connection = None
            rabbitmq.connect.side_effect = BrokerConnectionError("refused")

            self.assertEqual(main.main(), 1)

        rabbitmq.disconnect.assert_not_called()

    def test_send_mode_publishes_stdin_and_disconnects(self):
        app_config = mock.Mock(mode="send", logging_level="INFO")
        with mock.patch("main.initialize_config", return_value=app_config), \
                mock.patch("main.initialize_log"), \
                mock.patch("main.load_rabbitmq"), \
                mock.patch("main.load_queue_definition") as load_definition, \
                mock.patch("main.RabbitMQ") as rabbitmq_cls, \
                mock.patch("main.sys.stdin", ["hello\n"]):
            rabbitmq = rabbitmq_cls.return_value

            self.assertEqual(main.main(), 0)

        rabbitmq.init_queue.assert_called_once_with(load_definition.return_value)
        rabbitmq.send.assert_called_once_with("hello")
        rabbitmq.disconnect.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
