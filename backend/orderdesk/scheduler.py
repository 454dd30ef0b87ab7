# Overview: Background runner for the grant expiry sweep.

"""
Expiry Scheduler

Runs services.expiry_service.run_sweep every EXPIRY_SWEEP_INTERVAL_SECONDS
inside an application context. Meant to run as one dedicated process
(`flask scheduler run`) next to the web workers; start() also offers a
daemon thread for single-process deployments.

A failing sweep is logged and the loop keeps going.
"""

from __future__ import annotations

import logging
import threading

from flask import Flask

from .extensions import db
from .services import expiry_service


logger = logging.getLogger(__name__)


class ExpiryScheduler:
    def __init__(self, app: Flask, interval_seconds: int | None = None):
        self.app = app
        self.interval_seconds = interval_seconds or app.config.get("EXPIRY_SWEEP_INTERVAL_SECONDS", 60)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self, now=None) -> dict:
        with self.app.app_context():
            try:
                return expiry_service.run_sweep(now)
            finally:
                db.session.remove()

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Expiry sweep failed")

    def run_forever(self) -> None:
        logger.info(f"Expiry scheduler started (every {self.interval_seconds}s)")
        while not self._stop.is_set():
            self._tick()
            self._stop.wait(self.interval_seconds)
        logger.info("Expiry scheduler stopped")

    def start(self) -> threading.Thread:
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="expiry-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
