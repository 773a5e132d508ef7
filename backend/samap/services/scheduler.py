from __future__ import annotations

import threading
import time
from typing import Callable

from samap.core.logging_setup import logger
from samap.services.automation import AutomationService


class AutomationScheduler:
    """Ejecuta recordatorios y renovación de enlaces vencidos a intervalos fijos.

    Corre en un hilo propio; `stop()` lo despierta y espera a que termine la
    pasada en curso.
    """

    def __init__(
        self,
        service_factory: Callable[[], AutomationService],
        *,
        interval_seconds: float,
    ) -> None:
        self._service_factory = service_factory
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0
        self.last_result: dict | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="samap-automation", daemon=True)
        self._thread.start()
        logger.info("Scheduler de automatización iniciado (cada %ss)", self.interval_seconds)

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Scheduler de automatización detenido")

    def run_once(self) -> dict:
        start = time.monotonic()
        try:
            self.last_result = self._service_factory().run_periodic()
        except Exception:  # noqa: BLE001
            logger.exception("Pasada de automatización fallida")
            self.last_result = None
        finally:
            self.runs += 1
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Pasada de automatización #%s en %sms: %s", self.runs, duration_ms, self.last_result)
        return self.last_result or {}

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)
