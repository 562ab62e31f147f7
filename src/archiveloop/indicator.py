"""Status LED driven through the Linux LED class interface."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

import structlog

from archiveloop.models import IndicatorPattern

__all__ = ["StatusIndicator"]


class StatusIndicator:
    """Maps lifecycle phases to one of three LED patterns.

    slow pulse  -> waiting for the host or for the archive
    fast pulse  -> archive reachable, syncing time, archiving
    heartbeat   -> cycle completed
    """

    # trigger, delay_on ms, delay_off ms
    PATTERNS: ClassVar[dict[IndicatorPattern, tuple[str, int | None, int | None]]] = {
        IndicatorPattern.WAITING: ("timer", 100, 900),
        IndicatorPattern.ACTIVE: ("timer", 50, 150),
        IndicatorPattern.DONE: ("heartbeat", None, None),
    }

    def __init__(self, led_dir: Path, logger: structlog.stdlib.BoundLogger) -> None:
        self._led_dir = led_dir
        self._logger = logger.bind(component="indicator")
        self.pattern: IndicatorPattern | None = None

    def set(self, pattern: IndicatorPattern) -> None:
        """Switch the LED to `pattern`. A missing LED device is a logged no-op."""
        self.pattern = pattern
        trigger, delay_on, delay_off = self.PATTERNS[pattern]

        if not (self._led_dir / "trigger").exists():
            self._logger.debug("No status LED, skipping", pattern=pattern.value, led_dir=str(self._led_dir))
            return

        try:
            (self._led_dir / "trigger").write_text(trigger)
            # delay_on/delay_off only appear once the timer trigger is active
            if delay_on is not None and delay_off is not None:
                (self._led_dir / "delay_on").write_text(str(delay_on))
                (self._led_dir / "delay_off").write_text(str(delay_off))
        except OSError as e:
            self._logger.warning("Could not set status LED", pattern=pattern.value, error=str(e))
            return

        self._logger.debug("Status LED set", pattern=pattern.value)
