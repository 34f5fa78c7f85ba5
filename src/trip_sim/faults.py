"""Diagnostic Trouble Code (DTC) fault injector.

A three-state machine (idle, active, cooldown) deciding when a DTC is
asserted. Each trip gets exactly one scheduled fault inside a window
away from the trip edges, plus an independent per-tick chance of an
unscheduled fault while idle. An active code is reported on every
tick until it clears, then a cooldown blocks new faults.

Time is the simulated trip offset in seconds, supplied by the caller.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable, Sequence
from enum import Enum

from trip_sim.config import FaultConfig

logger = logging.getLogger(__name__)

# --- Built-in codes used when the primary code source is empty ---
FALLBACK_CODES: tuple[str, ...] = ("P0300", "P0420", "P0171", "P0455", "P0133")

# --- Activation reasons ---
REASON_SCHEDULED = "scheduled"
REASON_RANDOM = "random"


class FaultPhase(str, Enum):
    """States of the fault injector."""

    IDLE = "idle"
    ACTIVE = "active"
    COOLDOWN = "cooldown"


class FaultInjector:
    """Decides when a DTC becomes active and when it clears.

    Attributes:
        _config: Active duration, cooldown and probability settings.
        _codes: Primary code source, possibly empty.
        _rng: Random source for activation draws and code picks.
        _on_activated: Optional ``(reason, code)`` callback.
        _phase: Current state.
        _active_code: Currently asserted code, ``None`` unless active.
        _active_until: Trip offset at which the active code clears.
        _cooldown_until: Earliest offset at which a new fault may start.
        _scheduled_at: Offset of the guaranteed fault, ``None`` once
            consumed or skipped.
    """

    def __init__(
        self,
        config: FaultConfig | None = None,
        codes: Sequence[str] = (),
        rng: random.Random | None = None,
        on_activated: Callable[[str, str], None] | None = None,
    ) -> None:
        self._config = config or FaultConfig()
        self._codes: tuple[str, ...] = tuple(codes)
        self._rng = rng or random.Random()
        self._on_activated = on_activated
        self._phase = FaultPhase.IDLE
        self._active_code: str | None = None
        self._active_until: float = -math.inf
        self._cooldown_until: float = -math.inf
        self._scheduled_at: float | None = None

    @property
    def phase(self) -> FaultPhase:
        """Current state of the injector."""
        return self._phase

    @property
    def active_code(self) -> str | None:
        """Currently asserted code, or ``None``."""
        return self._active_code

    @property
    def active_until(self) -> float:
        """Offset at which the active code clears."""
        return self._active_until

    @property
    def cooldown_until(self) -> float:
        """Earliest offset at which a new fault may start."""
        return self._cooldown_until

    @property
    def scheduled_at(self) -> float | None:
        """Offset of the pending scheduled fault, if any."""
        return self._scheduled_at

    def plan(self, trip_duration_seconds: float) -> float:
        """Choose the guaranteed fault time for a trip.

        The time is drawn uniformly from ``[margin, duration - margin]``.
        Trips too short for that window get the fault at mid-trip.

        Args:
            trip_duration_seconds: Length of the trip.

        Returns:
            The scheduled trip offset in seconds.
        """
        margin = self._config.schedule_margin_seconds
        earliest = margin
        latest = trip_duration_seconds - margin
        if latest < earliest:
            self._scheduled_at = trip_duration_seconds / 2.0
        else:
            self._scheduled_at = self._rng.uniform(earliest, latest)
        logger.info("Scheduled fault planned at t=%.0fs", self._scheduled_at)
        return self._scheduled_at

    def pick_random_code(self) -> str:
        """Pick a code from the primary source, or from the built-in set."""
        if self._codes:
            return self._rng.choice(self._codes)
        return self._rng.choice(FALLBACK_CODES)

    def tick(self, now: float) -> str | None:
        """Advance the state machine to ``now``.

        Args:
            now: Current trip offset in seconds.

        Returns:
            The active DTC code, or ``None`` when no fault is asserted.
        """
        if self._phase is FaultPhase.ACTIVE:
            if self._schedule_due(now):
                self._skip_schedule()
            if now < self._active_until:
                return self._active_code
            logger.info("DTC %s cleared at t=%.0fs", self._active_code, now)
            self._active_code = None
            self._cooldown_until = now + self._config.cooldown_seconds
            self._phase = FaultPhase.COOLDOWN
            return None

        if self._phase is FaultPhase.COOLDOWN:
            # Only a scheduled time inside the cooldown window is lost.
            if self._schedule_due(now) and self._scheduled_at < self._cooldown_until:
                self._skip_schedule()
            if now < self._cooldown_until:
                return None
            self._phase = FaultPhase.IDLE

        if self._schedule_due(now):
            self._scheduled_at = None
            return self._activate(now, REASON_SCHEDULED)

        probability = self._config.probability_per_tick
        if probability > 0 and self._rng.random() < probability:
            return self._activate(now, REASON_RANDOM)

        return None

    def reset(self) -> None:
        """Return to idle and forget any planned fault."""
        self._phase = FaultPhase.IDLE
        self._active_code = None
        self._active_until = -math.inf
        self._cooldown_until = -math.inf
        self._scheduled_at = None

    def _schedule_due(self, now: float) -> bool:
        return self._scheduled_at is not None and now >= self._scheduled_at

    def _skip_schedule(self) -> None:
        logger.debug(
            "Scheduled fault at t=%.0fs skipped (%s)",
            self._scheduled_at, self._phase.value,
        )
        self._scheduled_at = None

    def _activate(self, now: float, reason: str) -> str:
        code = self.pick_random_code()
        self._active_code = code
        self._active_until = now + self._config.active_seconds
        self._phase = FaultPhase.ACTIVE
        logger.info(
            "DTC %s activated (%s) at t=%.0fs until t=%.0fs",
            code, reason, now, self._active_until,
        )
        if self._on_activated is not None:
            self._on_activated(reason, code)
        return code
