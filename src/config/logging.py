"""Logging helpers shared by call-scoped components."""

from __future__ import annotations

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

PENDING = "<pending>"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


class CallLogger(logging.LoggerAdapter):
    """Prefix log records with the call and media stream they belong to.

    Both identifiers are usually unknown when an agent is built; they are
    bound later by the call-initiation path and the media-stream bridge.
    """

    def __init__(self, logger: logging.Logger, call_id: str | None = None, stream_id: str | None = None) -> None:
        super().__init__(logger, {"call_id": call_id or PENDING, "stream_id": stream_id or PENDING})

    def bind(self, *, call_id: str | None = None, stream_id: str | None = None) -> None:
        if call_id:
            self.extra["call_id"] = call_id
        if stream_id:
            self.extra["stream_id"] = stream_id

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[call {self.extra['call_id']}] [stream {self.extra['stream_id']}] {msg}", kwargs
