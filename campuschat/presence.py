import asyncio
import logging
from typing import Dict, Iterable, Protocol, Set

logger = logging.getLogger(__name__)


class Channel(Protocol):
    async def send(self, payload: dict) -> None:
        ...


class PresenceRouter:
    """Maps an identity to its currently connected channels.

    One identity may hold several channels (phone and laptop, two tabs).
    The map is the only shared mutable state of the realtime layer; bind and
    unbind mutate it under a lock, push works on a snapshot taken under the
    same lock so it never sees a half-updated set. No lock is held while
    sending.
    """

    def __init__(self, push_timeout: float = 5.0) -> None:
        self.push_timeout = push_timeout
        self._channels: Dict[str, Set[Channel]] = {}
        self._lock = asyncio.Lock()

    async def bind(self, identity: str, channel: Channel) -> None:
        async with self._lock:
            self._channels.setdefault(identity, set()).add(channel)

    async def unbind(self, identity: str, channel: Channel) -> None:
        async with self._lock:
            channels = self._channels.get(identity)
            if not channels:
                return
            channels.discard(channel)
            if not channels:
                del self._channels[identity]

    async def _snapshot(self, identity: str) -> Set[Channel]:
        async with self._lock:
            return set(self._channels.get(identity, ()))

    async def _send(self, identity: str, channel: Channel, payload: dict) -> bool:
        try:
            await asyncio.wait_for(channel.send(payload), timeout=self.push_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("push to %s timed out on channel %s", identity, id(channel))
        except Exception as e:
            # the transport drops the channel once its connection handler exits
            logger.warning("push to %s failed on channel %s: %s", identity, id(channel), e)
        return False

    async def push(self, identity: str, payload: dict) -> int:
        """Send ``payload`` to every channel of ``identity``.

        Returns the number of channels that accepted it. Failures on single
        channels are logged and never raised.
        """
        channels = await self._snapshot(identity)
        if not channels:
            return 0
        results = await asyncio.gather(*(self._send(identity, c, payload) for c in channels))
        return sum(results)

    async def push_many(self, identities: Iterable[str], payload: dict) -> int:
        unique = list(dict.fromkeys(identities))
        counts = await asyncio.gather(*(self.push(i, payload) for i in unique))
        return sum(counts)

    def channel_count(self, identity: str) -> int:
        return len(self._channels.get(identity, ()))

    def is_online(self, identity: str) -> bool:
        return self.channel_count(identity) > 0

    def online(self) -> Set[str]:
        return set(self._channels)

    async def close(self) -> None:
        async with self._lock:
            self._channels.clear()
