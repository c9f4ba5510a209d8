"""Logging helpers for the async push service.

Every component logs under the ``AsyncPushService`` namespace so that a single
level set in ``main.py`` (via ``logging.basicConfig()``) covers the whole relay.
"""

import logging

ROOT_LOGGER_NAME = "AsyncPushService"


def get_logger(component: str | None = None) -> logging.Logger:
    """Return the service logger, or the child logger for ``component``.

    >>> get_logger("queue").name
    'AsyncPushService.queue'
    """
    if not component:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
