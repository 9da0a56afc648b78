"""Client reconciliation loop keeping a live player on the channel position."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from contextlib import suppress
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

from aiosimulcast.models.schedule import ChannelConfig
from aiosimulcast.models.sync import SyncAnnouncement
from aiosimulcast.models.types import AnnouncementKind, SyncState, SyncStatus
from aiosimulcast.position import Position, UpcomingProgram, compute_position, lookahead, now_ms

from .broadcast import BroadcastChannel
from .player import Player, PlayerCapabilities
from .schedule_client import ScheduleClient

logger = logging.getLogger(__name__)

StateCallback = Callable[[SyncState], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Timing parameters of the reconciliation loop, in seconds."""

    tick_interval: float = 1.0
    drift_threshold: float = 0.2
    ready_check_delay: float = 0.5
    ready_drift_threshold: float = 0.2
    end_cooldown: float = 0.5
    end_guard: float = 0.1
    announcement_staleness: float = 2.0
    retry_delay: float = 3.0
    max_retry_delay: float = 60.0
    presence_delay: float = 1.0
    skew_tolerance: float = 1.0
    lookahead_count: int = 10

    def __post_init__(self) -> None:
        """Validate the settings."""
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.retry_delay <= 0:
            raise ValueError("retry_delay must be positive")
        if self.max_retry_delay < self.retry_delay:
            raise ValueError("max_retry_delay must be >= retry_delay")
        for name in (
            "drift_threshold",
            "ready_check_delay",
            "ready_drift_threshold",
            "end_cooldown",
            "end_guard",
            "announcement_staleness",
            "presence_delay",
            "skew_tolerance",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.lookahead_count < 0:
            raise ValueError("lookahead_count must be >= 0")


class Reconciler:
    """
    Drives one viewing context: a player, its broadcast handle and timers.

    The position is always computed locally from the channel config. The
    optional ``schedule_client`` is only consulted as a cross-check and the
    loop stays correct when it fails permanently.
    """

    def __init__(
        self,
        config: ChannelConfig,
        player: Player,
        *,
        channel: BroadcastChannel | None = None,
        schedule_client: ScheduleClient | None = None,
        settings: SyncSettings | None = None,
        clock: Callable[[], int] | None = None,
        context_id: str | None = None,
        volume: int = 100,
        muted: bool = True,
    ) -> None:
        """Create a reconciliation loop for ``player``; call ``start`` to run it."""
        if not 0 <= volume <= 100:
            raise ValueError("volume must be in range 0..100")
        self._config = config
        self._player = player
        self._channel = channel
        self._schedule_client = schedule_client
        self._settings = settings or SyncSettings()
        self._clock = clock or now_ms
        self._context_id = context_id or uuid.uuid4().hex
        self._volume = volume
        self._muted = muted
        self._capabilities = PlayerCapabilities()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = asyncio.Lock()
        self._state = SyncState.INITIALIZING
        self._alive = False
        self._initialized = False
        self._in_transition = False
        self._stopped = False
        self._skew_detected = False
        self._loaded_program_id: str | None = None
        self._position: Position | None = None
        self._upcoming: list[UpcomingProgram] = []
        self._tick_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._fetch_tasks: set[asyncio.Task[None]] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._retry_handle: asyncio.TimerHandle | None = None
        self._backoff = self._settings.retry_delay
        self._state_callbacks: list[StateCallback] = []
        self._cleanup: list[Callable[[], None]] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def config(self) -> ChannelConfig:
        """Return the channel this loop follows."""
        return self._config

    @property
    def settings(self) -> SyncSettings:
        """Return the timing settings."""
        return self._settings

    @property
    def context_id(self) -> str:
        """Return the identifier used in cross-context announcements."""
        return self._context_id

    @property
    def state(self) -> SyncState:
        """Return the current state of the loop."""
        return self._state

    @property
    def status(self) -> SyncStatus:
        """Return the viewer-facing status."""
        if self._state is SyncState.ERROR:
            return SyncStatus.ERROR
        if self._state is SyncState.SYNCED and not self._skew_detected:
            return SyncStatus.LIVE
        return SyncStatus.SYNCING

    @property
    def running(self) -> bool:
        """Return True between ``start`` and ``stop``."""
        return self._alive

    @property
    def in_transition(self) -> bool:
        """Return True while an end-of-program transition is cooling down."""
        return self._in_transition

    @property
    def loaded_program_id(self) -> str | None:
        """Return the id of the program last loaded into the player."""
        return self._loaded_program_id

    @property
    def position(self) -> Position | None:
        """Return the most recently computed position."""
        return self._position

    @property
    def upcoming(self) -> list[UpcomingProgram]:
        """Return the lookahead list computed at the last program change."""
        return list(self._upcoming)

    @property
    def volume(self) -> int:
        """Return the requested volume."""
        return self._volume

    @property
    def muted(self) -> bool:
        """Return the requested mute state."""
        return self._muted

    def current_position(self) -> Position:
        """Compute the channel position right now."""
        self._position = compute_position(self._config, self._clock())
        return self._position

    def add_state_listener(self, callback: StateCallback) -> Callable[[], None]:
        """Register a callback for state changes, return a function removing it."""
        self._state_callbacks.append(callback)
        return lambda: self._state_callbacks.remove(callback)

    async def start(self) -> None:
        """
        Load the player at the current position and start the periodic tick.

        A stopped reconciler has closed its broadcast handle and cannot be
        started again.
        """
        if self._alive:
            logger.debug("Reconciler %s already running", self._context_id)
            return
        if self._stopped:
            raise RuntimeError("Reconciler cannot be restarted after stop")
        self._alive = True
        self._loop = asyncio.get_running_loop()
        self._capabilities = self._player.capabilities
        self._cleanup.append(self._player.add_end_listener(self._on_player_end))
        self._cleanup.append(self._player.add_error_listener(self._on_player_error))
        if self._channel is not None:
            self._cleanup.append(self._channel.subscribe(self._on_announcement))

        logger.info(
            "Starting reconciler %s for channel '%s' (%d programs, cycle %ds)",
            self._context_id,
            self._config.name,
            len(self._config.schedule),
            self._config.schedule.total_duration,
        )
        await self._initialize()
        self._tick_task = self._loop.create_task(self._tick_loop())
        if self._channel is not None:
            self._call_later(self._settings.presence_delay, self._announce_presence)
        if self._schedule_client is not None:
            self._spawn_fetch(self._cross_check())

    async def stop(self) -> None:
        """Cancel timers and tasks and close the broadcast handle."""
        if not self._alive:
            return
        self._alive = False
        self._stopped = True
        self._initialized = False
        current_task = asyncio.current_task()

        if self._tick_task is not None and self._tick_task is not current_task:
            self._tick_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._tick_task
        self._tick_task = None
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        pending = [task for task in self._tasks if task is not current_task]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        # fetches finish on their own and are discarded by the liveness check

        for remove in self._cleanup:
            with suppress(ValueError):
                remove()
        self._cleanup.clear()
        if self._channel is not None:
            self._channel.close()
        logger.info("Stopped reconciler %s", self._context_id)

    async def reconcile(self, trigger: str = "manual") -> bool:
        """
        Run one reconciliation pass.

        Returns True if a load or seek command was issued. The pass is a
        no-op when another pass holds the lock, when an end-of-program
        transition is cooling down, or when the player is not ready.
        """
        if not self._alive or not self._initialized or self._in_transition:
            return False
        if not self._player.available:
            logger.debug("Player not available, skipping %s pass", trigger)
            return False
        if self._lock.locked():
            logger.debug("Reconciliation in progress, skipping %s pass", trigger)
            return False
        async with self._lock:
            try:
                return await self._reconcile_locked(trigger)
            except Exception:
                logger.exception("Reconciliation (%s) failed", trigger)
                self._enter_error()
                return False

    async def handle_program_end(self) -> bool:
        """
        Advance to the program the schedule is on after a natural end.

        Returns True if a new program was loaded. Further end events are
        ignored until the cooldown after this transition has elapsed.
        """
        if not self._alive or not self._initialized or self._in_transition:
            return False
        if self._lock.locked():
            logger.debug("Reconciliation in progress, next tick handles the program end")
            return False
        self._in_transition = True
        try:
            async with self._lock:
                position = self.current_position()
                if position.program.id == self._loaded_program_id:
                    logger.debug(
                        "Program end reported, schedule still on '%s' (%.2fs left)",
                        position.program.title,
                        position.time_remaining,
                    )
                    return False
                logger.info(
                    "Program ended, advancing to '%s' at %.2fs",
                    position.program.title,
                    position.exact_offset,
                )
                await self._switch_to(position, AnnouncementKind.PROGRAM_ENDED)
                if self._schedule_client is not None:
                    self._spawn_fetch(self._cross_check())
                return True
        except Exception:
            logger.exception("Failed to advance after program end")
            self._enter_error()
            return False
        finally:
            self._call_later(self._settings.end_cooldown, self._finish_transition)

    async def mute(self) -> None:
        """Mute the player."""
        self._muted = True
        if self._capabilities.can_mute:
            await self._control("mute", self._player.mute)

    async def unmute(self) -> None:
        """Unmute the player."""
        self._muted = False
        if self._capabilities.can_mute:
            await self._control("unmute", self._player.unmute)

    async def set_volume(self, volume: int) -> None:
        """Set the player volume in the range 0..100."""
        if not 0 <= volume <= 100:
            raise ValueError("volume must be in range 0..100")
        self._volume = volume
        if self._capabilities.can_set_volume:
            await self._control("set volume", lambda: self._player.set_volume(volume))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _initialize(self) -> None:
        self._retry_handle = None
        if not self._alive:
            return
        self._set_state(SyncState.INITIALIZING)
        if not self._player.available:
            logger.warning("Player not available")
            self._enter_error()
            return

        async with self._lock:
            position = self.current_position()
            logger.info(
                "Loading '%s' (%d of %d) at %.2fs",
                position.program.title,
                position.program_index + 1,
                len(self._config.schedule),
                position.exact_offset,
            )
            try:
                await self._player.load(position.program.media_ref, position.exact_offset)
                await self._apply_audio()
            except Exception:
                logger.exception("Failed to initialize player")
                self._enter_error()
                return
            if not self._alive:
                return
            self._loaded_program_id = position.program.id
            self._refresh_upcoming(position)
            self._initialized = True
            self._backoff = self._settings.retry_delay
            self._set_state(SyncState.SYNCED)
        self._call_later(self._settings.ready_check_delay, self._schedule_ready_check)

    async def _control(self, action: str, command: Callable[[], Awaitable[None]]) -> None:
        """Send an audio command; the requested value is reapplied on the next load."""
        if not self._initialized or not self._player.available:
            logger.debug("Player not ready, deferring %s", action)
            return
        try:
            await command()
        except Exception:
            logger.exception("Failed to %s", action)

    async def _apply_audio(self) -> None:
        if self._capabilities.can_set_volume:
            await self._player.set_volume(self._volume)
        if self._capabilities.can_mute:
            if self._muted:
                await self._player.mute()
            else:
                await self._player.unmute()

    async def _ready_check(self) -> None:
        """Absorb start-up latency with a single drift check after loading."""
        if not self._alive or not self._initialized or self._in_transition:
            return
        if self._lock.locked():
            return
        async with self._lock:
            try:
                position = self.current_position()
                if position.program.id != self._loaded_program_id:
                    return
                await self._correct_drift(
                    position, self._settings.ready_drift_threshold, "ready-check"
                )
            except Exception:
                logger.exception("Initial drift check failed")
                self._enter_error()

    async def _reconcile_locked(self, trigger: str) -> bool:
        position = self.current_position()
        if position.program.id != self._loaded_program_id:
            logger.info(
                "Switching to '%s' at %.2fs (%s)",
                position.program.title,
                position.exact_offset,
                trigger,
            )
            await self._switch_to(position, AnnouncementKind.CORRECTION)
            return True
        return await self._correct_drift(position, self._settings.drift_threshold, trigger)

    async def _switch_to(self, position: Position, kind: AnnouncementKind) -> None:
        """Hard switch: load the computed program at the computed offset."""
        self._set_state(SyncState.CORRECTING)
        await self._player.load(position.program.media_ref, position.exact_offset)
        if not self._alive:
            return
        self._loaded_program_id = position.program.id
        self._refresh_upcoming(position)
        self._set_state(SyncState.SYNCED)
        self._announce(kind, position)

    async def _correct_drift(self, position: Position, threshold: float, trigger: str) -> bool:
        capabilities = self._capabilities
        if not (capabilities.can_seek and capabilities.can_report_time):
            self._set_state(SyncState.SYNCED)
            return False
        actual = self._player.current_offset()
        if actual is None:
            return False
        drift = abs(actual - position.exact_offset)
        if drift <= threshold:
            self._set_state(SyncState.SYNCED)
            return False

        logger.info(
            "Drift %.3fs on '%s', seeking to %.3fs (%s)",
            drift,
            position.program.title,
            position.exact_offset,
            trigger,
        )
        self._set_state(SyncState.CORRECTING)
        await self._player.seek(position.exact_offset)
        if not self._alive:
            return True
        self._set_state(SyncState.SYNCED)
        self._announce(AnnouncementKind.CORRECTION, position)
        return True

    def _refresh_upcoming(self, position: Position) -> None:
        self._upcoming = lookahead(self._config, position, self._settings.lookahead_count)

    def _near_end(self) -> bool:
        if self._loaded_program_id is None or not self._capabilities.can_report_time:
            return False
        program = self._config.schedule.get(self._loaded_program_id)
        offset = self._player.current_offset()
        if program is None or offset is None:
            return False
        return offset >= program.duration - self._settings.end_guard

    def _tick(self) -> None:
        if not self._initialized or self._state is SyncState.ERROR:
            return
        # near the end with the schedule still on the same program is plain drift
        if self._near_end() and self.current_position().program.id != self._loaded_program_id:
            self._spawn(self.handle_program_end())
        else:
            self._spawn(self.reconcile("tick"))

    async def _tick_loop(self) -> None:
        try:
            while self._alive:
                await asyncio.sleep(self._settings.tick_interval)
                if not self._alive:
                    break
                try:
                    self._tick()
                except Exception:
                    logger.exception("Reconciliation tick failed")
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass

    def _enter_error(self) -> None:
        self._initialized = False
        self._set_state(SyncState.ERROR)
        if not self._alive or self._retry_handle is not None:
            return
        assert self._loop is not None
        delay = min(self._backoff, self._settings.max_retry_delay)
        self._backoff = delay * 2
        logger.debug("Retrying initialization in %.1fs", delay)
        self._retry_handle = self._loop.call_later(
            delay, lambda: self._spawn(self._initialize())
        )

    def _finish_transition(self) -> None:
        self._in_transition = False

    def _schedule_ready_check(self) -> None:
        self._spawn(self._ready_check())

    def _set_state(self, state: SyncState) -> None:
        if state is self._state:
            return
        logger.debug("Reconciler %s: %s -> %s", self._context_id, self._state.value, state.value)
        self._state = state
        for callback in list(self._state_callbacks):
            try:
                result = callback(state)
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception:
                logger.exception("Error in state callback %s", callback)

    # ------------------------------------------------------------------
    # Player events
    # ------------------------------------------------------------------
    def _on_player_end(self) -> None:
        if not self._alive:
            return
        logger.debug("Player reported end of content")
        self._spawn(self.handle_program_end())

    def _on_player_error(self, error: Exception) -> None:
        if not self._alive:
            return
        logger.error("Player error: %s", error)
        self._enter_error()

    # ------------------------------------------------------------------
    # Cross-context coordination
    # ------------------------------------------------------------------
    def _announce(self, kind: AnnouncementKind, position: Position | None = None) -> None:
        if self._channel is None or not self._alive:
            return
        announcement = SyncAnnouncement(
            kind=kind,
            sender=self._context_id,
            timestamp=self._clock(),
            program_id=position.program.id if position else None,
            offset=position.exact_offset if position else None,
            index=position.program_index if position else None,
        )
        try:
            self._channel.publish(announcement)
        except Exception:
            logger.warning("Failed to publish %s announcement", kind.value, exc_info=True)

    def _announce_presence(self) -> None:
        self._announce(AnnouncementKind.FORCE_SYNC)

    def _on_announcement(self, announcement: SyncAnnouncement) -> None:
        if not self._alive or not self._initialized:
            return
        if announcement.sender == self._context_id:
            return
        if announcement.is_stale(self._clock(), self._settings.announcement_staleness):
            logger.debug("Ignoring stale %s announcement", announcement.kind.value)
            return

        match announcement.kind:
            case AnnouncementKind.CORRECTION | AnnouncementKind.FORCE_SYNC:
                self._spawn(self.reconcile("broadcast"))
            case AnnouncementKind.PROGRAM_ENDED:
                position = self.current_position()
                if position.program.id != self._loaded_program_id:
                    self._spawn(self.handle_program_end())

    async def _cross_check(self) -> None:
        assert self._schedule_client is not None
        data = await self._schedule_client.fetch_current()
        if not self._alive or data is None:
            return
        if data.epoch_start != self._config.epoch_ms:
            logger.error(
                "Server epoch %d differs from local epoch %d, keeping the local epoch. "
                "Changing the epoch reshuffles every viewer's position",
                data.epoch_start,
                self._config.epoch_ms,
            )
            return
        skew = (self._clock() - data.server_time) / 1000
        skewed = abs(skew) > self._settings.skew_tolerance
        if skewed:
            logger.warning("Local clock differs from server by %.3fs", skew)
        elif self._skew_detected:
            logger.info("Local clock agrees with server again")
        self._skew_detected = skewed

    # ------------------------------------------------------------------
    # Task helpers
    # ------------------------------------------------------------------
    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        if not self._alive or self._loop is None:
            coro.close()
            return
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _spawn_fetch(self, coro: Coroutine[Any, Any, None]) -> None:
        assert self._loop is not None
        task = self._loop.create_task(coro)
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    def _call_later(self, delay: float, callback: Callable[[], None]) -> None:
        assert self._loop is not None
        handle: asyncio.TimerHandle

        def _run() -> None:
            self._timers.discard(handle)
            if self._alive:
                callback()

        handle = self._loop.call_later(delay, _run)
        self._timers.add(handle)

    async def __aenter__(self) -> Self:
        """Start the loop when entering the async context manager."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop the loop when leaving the async context manager."""
        await self.stop()
