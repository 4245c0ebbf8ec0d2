"""Per-install context: cancellation, stage timeouts and logging sink."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from extensions.errors import Cancelled
from pipeline.config import Config


@dataclass
class InstallContext:
    """Carried through one install attempt.

    Attributes:
        fetch_timeout: Per-request timeout for downloads (seconds).
        configure_timeout: Timeout for phpize/configure (seconds).
        build_timeout: Timeout for the compile step (seconds).
        logger: Logger stage messages are written to.
    """

    fetch_timeout: float = 60.0
    configure_timeout: float = 600.0
    build_timeout: float = 1800.0
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("extensions.install")
    )
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def from_config(cls, config: Config, **overrides) -> InstallContext:
        values = {
            "fetch_timeout": config.fetch.timeout,
            "configure_timeout": config.build.configure_timeout,
            "build_timeout": config.build.build_timeout,
        }
        values.update(overrides)
        return cls(**values)

    def cancel(self) -> None:
        """Ask the running install to stop at the next checkpoint."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise Cancelled if the caller asked to abort."""
        if self.cancel_event.is_set():
            raise Cancelled("Install cancelled by caller")
