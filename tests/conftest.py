import base64
import os
import socket
import time
import uuid
import pytest

from common.config import QueueDefinition, RabbitMQConfig


# --------- Common helpers for the tests ----------


def unique_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def wait_until(predicate, timeout: float, check_interval: float = 0.05) -> bool:
    """
    Evaluate predicate() every check_interval until timeout.
    Returns True if it held, False if the timeout expired.
    """
    end = time.time() + timeout
    while time.time() < end:
        if predicate():
            return True
        time.sleep(check_interval)
    return False


def encode_password(password: str) -> str:
    return base64.b64encode(password.encode("utf-8")).decode("ascii")


@pytest.fixture(scope="session")
def host():
    return os.environ.get("MW_HOST", "localhost")


@pytest.fixture(scope="session")
def port():
    return os.environ.get("MW_PORT", "5672")


@pytest.fixture(scope="session")
def rabbitmq_config(host, port):
    """Connection settings for a live broker, skips the test when none is reachable"""
    try:
        with socket.create_connection((host, int(port)), timeout=1.0):
            pass
    except OSError as e:
        pytest.skip(f"no RabbitMQ broker reachable at {host}:{port}: {e}")

    return RabbitMQConfig(
        username=os.environ.get("MW_USER", "guest"),
        password=encode_password(os.environ.get("MW_PASSWORD", "guest")),
        address=host,
        port=port,
    )


@pytest.fixture
def make_definition():
    def _make(name: str, **flags):
        flags.setdefault("autodelete", True)
        return QueueDefinition(name=name, **flags)

    return _make
