"""Sending work messages to a message queue."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from .types import QueueMessage

_log = logging.getLogger(__name__)


class QueueError(Exception):
    """Raised when the queue is not usable or a message cannot be sent."""


class QueueApi(Protocol):
    """The two queue operations the sender relies on."""

    def get_queue_url(self, queue_name: str) -> str:
        """Return the URL of the queue called ``queue_name``."""

    def send_message(self, queue_url: str, body: str) -> Any:
        """Put ``body`` on the queue at ``queue_url`` and return its message id."""


def _encode(message: Any) -> str:
    if isinstance(message, QueueMessage):
        return message.to_json()
    if dataclasses.is_dataclass(message) and not isinstance(message, type):
        message = dataclasses.asdict(message)
    elif isinstance(message, Mapping):
        message = dict(message)
    try:
        return json.dumps(message, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        _log.error("error marshalling message: %s", exc)
        raise QueueError(f"error marshalling message: {exc}") from exc


class QueueSender:
    """Sends JSON messages to one named queue.

    ``api`` may be ``None``, leaving the sender uninitialised: every send then fails.
    """

    def __init__(self, api: QueueApi | None, queue_name: str):
        if not queue_name:
            raise QueueError("queue_name is not set")
        self.api = api
        self.queue_name = queue_name
        self.queue_url: str | None = None
        if api is not None:
            try:
                self.queue_url = api.get_queue_url(queue_name)
            except Exception as exc:
                raise QueueError(f"error getting queue url: {exc}") from exc

    def send(self, message: Any) -> Any:
        """Serialise ``message`` to JSON and send it; returns what the API returns."""
        if self.api is None or self.queue_url is None:
            raise QueueError("sqs is not initialized")
        body = _encode(message)
        try:
            return self.api.send_message(self.queue_url, body)
        except Exception as exc:
            _log.error("error sending message to sqs: %s", exc)
            raise QueueError(f"error sending message to queue: {exc}") from exc