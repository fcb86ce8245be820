#!/usr/bin/env python3

from broker import BrokerError, RabbitMQ
from common.config import initialize_config, load_queue_definition, load_rabbitmq
from common.utils import log_action
import logging
import queue
import signal
import sys
import threading

POLL_INTERVAL = 1.0


def initialize_log(logging_level):
    """
    Python custom logging initialization

    Current timestamp is added to be able to identify in docker
    compose logs the date when the log has arrived
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(message)s",
        level=logging_level,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def run_send(rabbitmq, lines):
    """Publish every non empty line, return how many were sent"""
    sent = 0
    for line in lines:
        message = line.rstrip("\r\n")
        if not message:
            continue
        rabbitmq.send(message)
        sent += 1

    log_action("send_lines", "success", extra_fields={"sent": sent})
    return sent


def run_receive(rabbitmq, shutdown_event):
    """Log every received message until shutdown is requested or the subscription ends"""
    messages = queue.Queue()
    receiver = rabbitmq.receive(messages)

    received = 0
    while not shutdown_event.is_set():
        try:
            message = messages.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            if not receiver.is_alive():
                log_action(
                    "receive_loop",
                    "success",
                    level=logging.WARNING,
                    extra_fields={"msg": "subscription ended"},
                )
                break
            continue

        received += 1
        log_action("message_received", "success", extra_fields={"message": message})

    log_action("receive_loop", "success", extra_fields={"received": received})
    return received


def main():
    rabbitmq = None
    shutdown_event = threading.Event()

    def _signal_handler(signum, frame):
        logging.info(
            "action: shutdown | result: in_progress | msg: received shutdown signal"
        )
        shutdown_event.set()

    try:
        app_config = initialize_config()

        initialize_log(app_config.logging_level)

        # Log config parameters at the beginning of the program to verify the configuration
        logging.debug(
            "action: config | result: success | mode: %s | rabbitmq_config: %s | queue_config: %s | logging_level: %s",
            app_config.mode,
            app_config.rabbitmq_config,
            app_config.queue_config,
            app_config.logging_level,
        )

        rabbitmq_config = load_rabbitmq(app_config.rabbitmq_config)
        queue_definition = load_queue_definition(app_config.queue_config)

        rabbitmq = RabbitMQ(rabbitmq_config)
        rabbitmq.connect()
        rabbitmq.init_queue(queue_definition)

        if app_config.mode == "send":
            run_send(rabbitmq, sys.stdin)
        else:
            signal.signal(signal.SIGTERM, _signal_handler)
            run_receive(rabbitmq, shutdown_event)

        return 0

    except KeyError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
    except ValueError as e:
        print(f"Configuration Parse Error: {e}", file=sys.stderr)
    except OSError as e:
        print(f"Configuration File Error: {e}", file=sys.stderr)
    except BrokerError as e:
        logging.error("action: main | result: fail | error: %s", e)
    except KeyboardInterrupt:
        logging.info(
            "action: shutdown | result: in_progress | msg: received keyboard interrupt"
        )
        return 0
    finally:
        if rabbitmq is not None and rabbitmq.connection is not None:
            try:
                rabbitmq.disconnect()
            except BrokerError as e:
                logging.error("action: shutdown | result: fail | error: %s", e)

    return 1


if __name__ == "__main__":
    sys.exit(main())
