"""Periodic execution until told to stop."""

import logging
import threading
import time
from typing import Callable


def run_until(
    stop: threading.Event,
    log: logging.Logger,
    interval: float,
    func: Callable[[], object],
) -> None:
    """Call ``func`` every ``interval`` seconds until ``stop`` is set.

    Exceptions raised by ``func`` are logged and do not end the loop.
    """
    while not stop.is_set():
        try:
            func()
        except Exception as exc:  # noqa: BLE001 - every failure is only logged
            log.error("%s", exc)
        time.sleep(interval)