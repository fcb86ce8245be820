#!/usr/bin/env python3

import base64
import binascii
import json
import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

VALID_MODES = ("send", "receive")

# amqp:// defaults used when the address or port is left empty
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5672


@dataclass
class RabbitMQConfig:
    """
    Connection settings for the RabbitMQ instance

    Loaded from a json file like:
        {"username": "", "password": "", "address": "", "port": ""}

    The password is stored base64 encoded and the address is the plain host,
    the protocol is always amqp://
    """

    username: str = ""
    password: str = ""
    address: str = ""
    port: str = ""

    def decoded_password(self) -> str:
        """
        Return the base64 decoded password, or an empty string if it can't be decoded

        Line breaks inside the encoded value are ignored. The decoded bytes
        must be valid UTF-8.
        """
        encoded = self.password.replace("\r", "").replace("\n", "")
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return ""

    def host(self) -> str:
        return self.address or DEFAULT_HOST

    def port_number(self) -> int:
        """The port as an integer, DEFAULT_PORT when empty. Raises ValueError if it isn't numeric"""
        if not self.port:
            return DEFAULT_PORT
        return int(self.port)

    def endpoint(self) -> str:
        return f"{self.host()}:{self.port or DEFAULT_PORT}"


@dataclass
class QueueDefinition:
    """
    Queue definition for the message queue

    Loaded from a json file like:
        {"name": "", "durable": true, "autodelete": false, "exclusiv": false, "nowait": false}
    """

    name: str = ""
    durable: bool = False
    autodelete: bool = False
    exclusiv: bool = False
    nowait: bool = False


@dataclass
class AppConfig:
    """Configuration for the command line entry point"""

    logging_level: str
    rabbitmq_config: str
    queue_config: str
    mode: str


def _read_json_object(path):
    logger.info("action: load_config | result: in_progress | path: %s", path)

    try:
        with open(path, "r", encoding="utf-8") as json_file:
            data = json.load(json_file)
    except OSError as e:
        logger.error("action: load_config | result: fail | path: %s | error: %s", path, e)
        raise
    except ValueError as e:
        logger.error("action: load_config | result: fail | path: %s | error: %s", path, e)
        raise ValueError(f"Invalid json in {path}: {e}") from e

    if not isinstance(data, dict):
        logger.error(
            "action: load_config | result: fail | path: %s | error: expected a json object",
            path,
        )
        raise ValueError(f"Expected a json object in {path}, got {type(data).__name__}")

    return data


def _build_record(record_cls, data, path):
    """Map a json object onto a dataclass, missing keys keep their zero value and unknown keys are ignored"""
    values = {}
    for field in fields(record_cls):
        if field.name not in data:
            continue
        value = data[field.name]

        if field.type is bool:
            if not isinstance(value, bool):
                raise ValueError(
                    f"Field '{field.name}' in {path} must be a boolean, got {value!r}"
                )
        elif field.name == "port" and isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        elif not isinstance(value, str):
            raise ValueError(
                f"Field '{field.name}' in {path} must be a string, got {value!r}"
            )

        values[field.name] = value

    return record_cls(**values)


def load_rabbitmq(path) -> RabbitMQConfig:
    """
    Load the RabbitMQ connection settings from a json file

    Raises OSError if the file can't be read and ValueError if it
    doesn't contain a valid settings object
    """
    data = _read_json_object(path)
    try:
        config = _build_record(RabbitMQConfig, data, path)
    except ValueError as e:
        logger.error("action: load_rabbitmq | result: fail | path: %s | error: %s", path, e)
        raise

    logger.debug(
        "action: load_rabbitmq | result: success | endpoint: %s | username: %s",
        config.endpoint(),
        config.username,
    )
    return config


def load_queue_definition(path) -> QueueDefinition:
    """Load a queue definition from a json file"""
    data = _read_json_object(path)
    try:
        definition = _build_record(QueueDefinition, data, path)
    except ValueError as e:
        logger.error(
            "action: load_queue_definition | result: fail | path: %s | error: %s", path, e
        )
        raise

    logger.debug(
        "action: load_queue_definition | result: success | queue: %s", definition.name
    )
    return definition


def initialize_config(config_file="config.ini"):
    """Parse config file to find program config params

    Function that searches for program configuration parameters in the config file.
    Environment variables take precedence over config file values.
    If at least one of the config parameters is not found a KeyError exception
    is thrown. If a parameter could not be parsed, a ValueError is thrown.
    If parsing succeeded, the function returns an AppConfig object
    """

    config = ConfigParser()

    # A missing file is fine as long as the environment provides every value
    config.read(config_file)

    def _get_required_config(env_key, config_key):
        """Get configuration value from environment variable or config file, raise error if missing"""
        env_value = os.getenv(env_key)
        if env_value is not None:
            return env_value

        try:
            return config["DEFAULT"][config_key]
        except KeyError:
            raise KeyError(
                f"Required configuration parameter '{config_key}' not found in environment variable '{env_key}' or config file"
            )

    try:
        app_config = AppConfig(
            logging_level=_get_required_config("LOGGING_LEVEL", "LOGGING_LEVEL"),
            rabbitmq_config=_get_required_config("RABBITMQ_CONFIG", "RABBITMQ_CONFIG"),
            queue_config=_get_required_config("QUEUE_CONFIG", "QUEUE_CONFIG"),
            mode=_get_required_config("MODE", "MODE").strip().lower(),
        )

        if app_config.mode not in VALID_MODES:
            raise ValueError(
                f"MODE must be one of {', '.join(VALID_MODES)}, got '{app_config.mode}'"
            )

    except KeyError as e:
        raise KeyError("Configuration error: {}. Aborting".format(e))
    except ValueError as e:
        raise ValueError("Configuration parsing error: {}. Aborting".format(e))

    return app_config
