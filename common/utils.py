import logging


# Deadline in seconds for a single publish
SEND_TIMEOUT = 5

HEARTBEAT = 600  # 10 minutes

# How long the broker may keep a connection blocked before pika gives up
BLOCKED_CONNECTION_TIMEOUT = SEND_TIMEOUT

VIRTUAL_HOST = "/"

CONTENT_TYPE = "text/plain"

# Publishing to the default exchange routes by queue name
DEFAULT_EXCHANGE = ""

logger = logging.getLogger(__name__)


def log_action(action, result, level=logging.INFO, error=None, extra_fields=None):
    """
    Centralized logging function for consistent log format

    Args:
        action: The action being performed
        result: The result of the action (success, fail, etc.)
        level: Logging level (INFO, ERROR, DEBUG, etc.)
        error: Optional error information
        extra_fields: Optional dict with additional fields to log (e.g., queue, endpoint, etc.)
    """
    log_parts = [
        f"action: {action}",
        f"result: {result}",
    ]

    if error:
        log_parts.append(f"error: {error}")

    if extra_fields:
        for key, value in extra_fields.items():
            log_parts.append(f"{key}: {value}")

    log_message = " | ".join(log_parts)
    logger.log(level, log_message)
