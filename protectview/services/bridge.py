"""
Background asyncio loop shared by every request.

Flask serves requests on worker threads; the NVR client, the caches and the
live streams all live on this one event loop. Request threads hand work over
with `run()` and block until it completes.
"""
import asyncio
import concurrent.futures
import threading

from ..errors import UpstreamTimeout


class ProtectBridge:
    """Owns the event loop thread that the NVR services run on"""

    def __init__(self, name: str = 'protect-loop'):
        self.name = name
        self._loop = None
        self._thread = None
        self._started = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def loop(self):
        return self._loop

    def start(self):
        """Start the loop thread"""
        if self.running:
            return
        self._loop = asyncio.new_event_loop()
        self._started.clear()
        self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self._thread.start()
        self._started.wait()
        print('[Protect] Event loop thread started')

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._started.set)
        self._loop.run_forever()

    def run(self, coro, timeout: float = None):
        """Run a coroutine on the loop and wait for its result"""
        if not self.running:
            self.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise UpstreamTimeout(f'Operation timed out after {timeout:g}s') from None

    def stop(self, shutdown=None, timeout: float = 10):
        """Run an optional shutdown coroutine, then stop the loop thread"""
        if not self.running:
            return
        if shutdown is not None:
            try:
                self.run(shutdown, timeout=timeout)
            except Exception as e:
                print(f'[Protect] Error during shutdown: {e}')
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=2)
        if not self._thread.is_alive():
            self._loop.close()
        self._thread = None
        print('[Protect] Event loop thread stopped')
