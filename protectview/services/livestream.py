"""
Live fragmented-MP4 stream for one camera.

An ffmpeg child process copies the camera's RTSPS channel into fragmented MP4
on stdout. A reader task splits that into the init segment (ftyp+moov) and
media segments (moof+mdat) and fans each segment out to every subscriber.
All methods must run on the bridge event loop.
"""
import asyncio
import itertools

from ..errors import StreamError, UpstreamTimeout
from .mp4 import INIT_BOXES, BoxError, codec_string, read_box

SUBSCRIBER_QUEUE_SIZE = 32


class Subscription:
    """One consumer of a live stream; receives the init segment first"""

    def __init__(self, stream: 'LiveStream', init_segment: bytes):
        self.stream = stream
        self.queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self.queue.put_nowait(init_segment)

    async def next_chunk(self, timeout: float = None):
        """Next segment, or None once the stream has ended"""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            message = f'No video from camera {self.stream.camera_id} for {timeout:g}s'
            if self.stream.last_error:
                message += f' (ffmpeg: {self.stream.last_error})'
            raise UpstreamTimeout(message) from None

    def close(self):
        self.stream.unsubscribe(self)


class LiveStream:
    """ffmpeg-backed live stream handle: start, get_init_segment, codec, subscribe, stop"""

    _request_ids = itertools.count(1)

    def __init__(self, camera_id: str, url: str, verify_tls: bool = True,
                 ffmpeg_path: str = 'ffmpeg'):
        self.camera_id = camera_id
        self.url = url
        self.verify_tls = verify_tls
        self.ffmpeg_path = ffmpeg_path
        self.request_id = f'live-{camera_id}-{next(self._request_ids)}'
        self.codec = None
        self.init_segment = None
        self.segments_sent = 0
        self.last_error = None
        self._process = None
        self._reader = None
        self._stderr_reader = None
        self._init_ready = None
        self._subscribers = []
        self._stopped = False

    def _command(self) -> list:
        cmd = [
            self.ffmpeg_path, '-hide_banner', '-loglevel', 'error',
            '-rtsp_transport', 'tcp',
        ]
        if self.verify_tls:
            cmd += ['-tls_verify', '1']
        cmd += [
            '-i', self.url,
            '-c', 'copy',
            '-f', 'mp4',
            '-movflags', 'frag_keyframe+empty_moov+default_base_moof',
            'pipe:1',
        ]
        return cmd

    @property
    def is_running(self) -> bool:
        return self._reader is not None and not self._reader.done() and not self._stopped

    async def start(self) -> bool:
        loop = asyncio.get_running_loop()
        self._init_ready = loop.create_future()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StreamError(f'Could not launch {self.ffmpeg_path}: {e}') from e

        self._reader = loop.create_task(self._pump())
        self._stderr_reader = loop.create_task(self._drain_stderr())
        print(f'[Stream] {self.request_id} started (pid {self._process.pid})')
        return True

    async def get_init_segment(self, timeout: float = None) -> bytes:
        if self._init_ready is None:
            raise StreamError('Livestream has not been started')
        try:
            return await asyncio.wait_for(asyncio.shield(self._init_ready), timeout)
        except asyncio.TimeoutError:
            raise UpstreamTimeout(
                f'Camera {self.camera_id} sent no init segment within {timeout:g}s') from None

    def subscribe(self) -> Subscription:
        if self.init_segment is None:
            raise StreamError('Livestream is not ready')
        if self._stopped or (self._reader is not None and self._reader.done()):
            raise StreamError('Livestream has ended')
        subscription = Subscription(self, self.init_segment)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        # Frees a reader blocked on this consumer's full queue
        while not subscription.queue.empty():
            subscription.queue.get_nowait()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def _pump(self):
        init_parts = []
        segment = []
        try:
            while True:
                box = await read_box(self._process.stdout)
                if box is None:
                    break
                box_type, data = box

                if self.init_segment is None:
                    if box_type in INIT_BOXES:
                        init_parts.append(data)
                    if box_type == 'moov':
                        self._set_init_segment(b''.join(init_parts))
                    continue

                if box_type == 'moof':
                    segment = [data]
                elif box_type == 'mdat' and segment:
                    segment.append(data)
                    await self._broadcast(b''.join(segment))
                    segment = []

            if not self._init_ready.done():
                self._init_ready.set_exception(StreamError(await self._exit_reason()))
            print(f'[Stream] {self.request_id} upstream ended')
        except asyncio.CancelledError:
            raise
        except Exception as e:
            print(f'[Stream] {self.request_id} reader error: {e}')
            if not self._init_ready.done():
                self._init_ready.set_exception(StreamError(f'Livestream failed: {e}'))
        finally:
            if not self._init_ready.done():
                self._init_ready.set_exception(StreamError('Livestream stopped before sending video'))
            self._end_subscribers()

    def _set_init_segment(self, data: bytes):
        try:
            self.codec = codec_string(data)
        except BoxError as e:
            print(f'[Stream] {self.request_id} unknown codec: {e}')
        self.init_segment = data
        self._init_ready.set_result(data)

    async def _broadcast(self, chunk: bytes):
        # Bounded queues: a slow consumer holds back the reader, and with it ffmpeg
        for subscription in list(self._subscribers):
            await subscription.queue.put(chunk)
        self.segments_sent += 1

    def _end_subscribers(self):
        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait(None)
            except asyncio.QueueFull:
                subscription.queue.get_nowait()
                subscription.queue.put_nowait(None)
        self._subscribers.clear()

    async def _drain_stderr(self):
        """Read ffmpeg's stderr as it arrives so the pipe never fills; keeps the last line"""
        while True:
            try:
                line = await self._process.stderr.readline()
            except ValueError:
                # Line longer than the reader limit; the buffer was discarded
                continue
            if not line:
                return
            message = line.decode('utf-8', 'replace').strip()
            if message:
                self.last_error = message
                print(f'[Stream] {self.request_id} ffmpeg: {message}')

    async def _exit_reason(self) -> str:
        if self._stderr_reader is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_reader), 1)
            except asyncio.TimeoutError:
                pass
        return self.last_error or 'Livestream ended before sending video'

    async def stop(self):
        if self._stopped:
            return
        self._stopped = True

        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
                await asyncio.wait_for(self._process.wait(), 3)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        if self._stderr_reader is not None and not self._stderr_reader.done():
            self._stderr_reader.cancel()
        self._end_subscribers()
        print(f'[Stream] {self.request_id} stopped after {self.segments_sent} segments')
