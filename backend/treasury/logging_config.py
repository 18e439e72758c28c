from __future__ import annotations

import logging

from treasury import settings


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the ``treasury`` logger tree."""
    root = logging.getLogger("treasury")
    root.setLevel(level or settings.LOG_LEVEL)

    if any(getattr(h, "_treasury_handler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._treasury_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
