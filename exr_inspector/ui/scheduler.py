"""Debounced scheduling of backend preview requests."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from PyQt5 import QtCore  # type: ignore


LOGGER = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD_MS = 120


class DebouncedUpdateScheduler(QtCore.QObject):
    """Collapse bursts of :meth:`trigger` calls into one callback invocation.

    Every trigger restarts a single-shot timer; the callback runs once the
    quiet period passes without another trigger.  The callback receives no
    arguments and is expected to read the latest parameter values itself.
    """

    fired = QtCore.pyqtSignal()

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        quiet_period_ms: int = DEFAULT_QUIET_PERIOD_MS,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._callback = callback
        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(max(0, int(quiet_period_ms)))
        self._timer.timeout.connect(self._on_timeout)
        self.trigger_count = 0

    @property
    def quiet_period_ms(self) -> int:
        return self._timer.interval()

    def set_quiet_period(self, quiet_period_ms: int) -> None:
        self._timer.setInterval(max(0, int(quiet_period_ms)))

    def trigger(self) -> None:
        """Schedule the callback, replacing any pending schedule."""

        self.trigger_count += 1
        self._timer.start()

    def is_pending(self) -> bool:
        return self._timer.isActive()

    def cancel(self) -> None:
        self._timer.stop()

    def flush(self) -> bool:
        """Run a pending callback immediately.  Returns ``False`` if nothing was pending."""

        if not self._timer.isActive():
            return False
        self._timer.stop()
        self._on_timeout()
        return True

    @QtCore.pyqtSlot()
    def _on_timeout(self) -> None:
        LOGGER.debug("Debounced update fired after %s trigger(s)", self.trigger_count)
        self.trigger_count = 0
        self.fired.emit()
        self._callback()


__all__ = ["DEFAULT_QUIET_PERIOD_MS", "DebouncedUpdateScheduler"]
