"""
Registry of active live streams, one per camera.

Requests for the same camera inside the reuse window share the stream that
is already open (or still opening) instead of starting another one on the
NVR. All methods must run on the bridge event loop.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict


@dataclass
class ActiveStream:
    pending: asyncio.Task
    timestamp: float
    request_count: int = 1

    @property
    def live(self):
        """The live stream handle, or None while it is still starting"""
        if self.pending.done() and not self.pending.cancelled() and self.pending.exception() is None:
            return self.pending.result()
        return None


class StreamRegistry:
    """De-duplicates live streams per camera within `reuse_window` seconds"""

    def __init__(self, reuse_window: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.reuse_window = reuse_window
        self._clock = clock
        self._streams: Dict[str, ActiveStream] = {}

    async def get_or_create(self, camera_id: str, factory: Callable[[], Awaitable]):
        """Return the camera's recent stream, or open a new one via `factory`"""
        now = self._clock()
        entry = self._streams.get(camera_id)

        if entry is not None and now - entry.timestamp < self.reuse_window:
            entry.request_count += 1
            print(f'[Stream] Reusing stream for {camera_id} (request #{entry.request_count})')
            return await asyncio.shield(entry.pending)

        if entry is not None:
            del self._streams[camera_id]
            asyncio.get_running_loop().create_task(self._stop_entry(camera_id, entry))

        task = asyncio.get_running_loop().create_task(factory())
        entry = ActiveStream(pending=task, timestamp=now)
        self._streams[camera_id] = entry

        try:
            return await asyncio.shield(task)
        except BaseException:
            if self._streams.get(camera_id) is entry and task.done():
                del self._streams[camera_id]
            raise

    def get(self, camera_id: str):
        return self._streams.get(camera_id)

    async def remove(self, camera_id: str, live=None) -> bool:
        """
        Stop and evict the camera's stream. When `live` is given, only evict
        if the registry still holds that same handle.
        """
        entry = self._streams.get(camera_id)
        if entry is None:
            return False
        if live is not None and entry.live is not live:
            return False

        del self._streams[camera_id]
        await self._stop_entry(camera_id, entry)
        return True

    async def _stop_entry(self, camera_id: str, entry: ActiveStream) -> None:
        if not entry.pending.done():
            # The factory tears down a half-started stream when cancelled
            entry.pending.cancel()
            return

        live = entry.live
        if live is None:
            return
        try:
            await live.stop()
        except Exception as e:
            print(f'[Stream] Error stopping stream for {camera_id}: {e}')

    async def stop_all(self) -> None:
        for camera_id in list(self._streams):
            await self.remove(camera_id)

    def __len__(self):
        return len(self._streams)

    def __contains__(self, camera_id):
        return camera_id in self._streams
