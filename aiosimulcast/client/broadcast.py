"""Publish/subscribe medium shared by the viewing contexts of one channel."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from aiosimulcast.models.sync import SyncAnnouncement

logger = logging.getLogger(__name__)

AnnouncementHandler = Callable[[SyncAnnouncement], Awaitable[None] | None]

DEFAULT_CHANNEL_NAME = "aiosimulcast-sync"


@runtime_checkable
class BroadcastChannel(Protocol):
    """
    Best-effort broadcast between co-located viewing contexts.

    Delivery is asynchronous and unordered; messages are never delivered
    back to the publishing channel. Loss is tolerated because every
    context re-checks its position on the next tick anyway.
    """

    @property
    def name(self) -> str:
        """Return the channel name shared by all participants."""
        ...

    def publish(self, announcement: SyncAnnouncement) -> None:
        """Send an announcement to every other participant."""
        ...

    def subscribe(self, handler: AnnouncementHandler) -> Callable[[], None]:
        """Register a handler, return a function removing it."""
        ...

    def close(self) -> None:
        """Stop sending and receiving."""
        ...


class LocalBroadcastHub:
    """Connects ``LocalBroadcastChannel`` instances living in the same process."""

    def __init__(self) -> None:
        """Create an empty hub."""
        self._channels: dict[str, set[LocalBroadcastChannel]] = defaultdict(set)

    def open(self, name: str = DEFAULT_CHANNEL_NAME) -> LocalBroadcastChannel:
        """Open a new participant on the channel ``name``."""
        channel = LocalBroadcastChannel(self, name)
        self._channels[name].add(channel)
        logger.debug("Opened broadcast channel %s (%d open)", name, len(self._channels[name]))
        return channel

    def participants(self, name: str) -> int:
        """Return the number of open channels with the given name."""
        return len(self._channels.get(name, ()))

    def _detach(self, channel: LocalBroadcastChannel) -> None:
        members = self._channels.get(channel.name)
        if members is None:
            return
        members.discard(channel)
        if not members:
            del self._channels[channel.name]

    def _dispatch(self, sender: LocalBroadcastChannel, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        for channel in list(self._channels.get(sender.name, ())):
            if channel is sender:
                continue
            loop.call_soon(channel._deliver, data)  # noqa: SLF001


class LocalBroadcastChannel:
    """
    One participant of a ``LocalBroadcastHub`` channel.

    Announcements travel as JSON, the same way they would over any other
    transport.
    """

    def __init__(self, hub: LocalBroadcastHub, name: str) -> None:
        """Do not call this constructor, use ``LocalBroadcastHub.open`` instead."""
        self._hub = hub
        self._name = name
        self._handlers: list[AnnouncementHandler] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def name(self) -> str:
        """Return the channel name."""
        return self._name

    @property
    def closed(self) -> bool:
        """Return True once the channel was closed."""
        return self._closed

    def publish(self, announcement: SyncAnnouncement) -> None:
        """Send an announcement to every other participant."""
        if self._closed:
            logger.debug("Dropping announcement on closed channel %s", self._name)
            return
        self._hub._dispatch(self, announcement.to_jsonb())  # noqa: SLF001

    def subscribe(self, handler: AnnouncementHandler) -> Callable[[], None]:
        """Register a handler, return a function removing it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def close(self) -> None:
        """Detach from the hub and drop all handlers."""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        self._hub._detach(self)  # noqa: SLF001
        for task in self._tasks:
            task.cancel()

    def _deliver(self, data: bytes) -> None:
        if self._closed:
            return
        try:
            announcement = SyncAnnouncement.from_json(data)
        except Exception:
            logger.exception("Failed to parse announcement: %r", data)
            return
        for handler in list(self._handlers):
            try:
                result = handler(announcement)
                if asyncio.iscoroutine(result):
                    task = asyncio.get_running_loop().create_task(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except Exception:
                logger.exception("Error in broadcast handler %s", handler)
