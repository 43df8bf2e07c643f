"""
NVR service: the caches and registries behind every API route.

One instance is created per Flask app and stored in app.extensions. Its
coroutines run on the bridge loop; routes call them through `ProtectBridge.run`.
"""
import time

from ..errors import CameraNotFound, MissingCredentials, StreamError
from .cache import TTLCache
from .connection import ConnectionCache, connection_key
from .livestream import LiveStream
from .protect_client import ProtectClient
from .signals import race_with_timeout
from .streams import StreamRegistry


def simplify_camera(camera: dict) -> dict:
    """Reduce a bootstrap camera record to what the camera list needs"""
    is_online = camera.get('isConnected')
    if is_online is None:
        is_online = camera.get('state') == 'CONNECTED'
    return {
        'id': camera.get('id') or camera.get('mac') or camera.get('uuid'),
        'name': camera.get('name') or camera.get('displayName') or camera.get('type') or 'Camera',
        'isOnline': bool(is_online),
    }


class NvrService:
    """Connection cache, bootstrap/codec caches and stream registry in one place"""

    def __init__(self, client_factory=ProtectClient, stream_factory=LiveStream,
                 clock=time.monotonic, login_timeout=60, health_check_interval=60,
                 bootstrap_ttl=30, codec_ttl=300, reuse_window=5, stream_channel=0,
                 start_timeout=20, ffmpeg_path='ffmpeg'):
        self.bootstraps = TTLCache(bootstrap_ttl, clock, name='bootstrap')
        self.codecs = TTLCache(codec_ttl, clock, name='codec')
        self.connections = ConnectionCache(
            client_factory,
            bootstraps=self.bootstraps,
            login_timeout=login_timeout,
            health_check_interval=health_check_interval,
            clock=clock,
        )
        self.streams = StreamRegistry(reuse_window, clock)
        self._stream_factory = stream_factory
        self.login_timeout = login_timeout
        self.stream_channel = stream_channel
        self.start_timeout = start_timeout
        self.ffmpeg_path = ffmpeg_path

    @classmethod
    def from_config(cls, config, **overrides):
        options = dict(
            login_timeout=config['LOGIN_TIMEOUT'],
            health_check_interval=config['HEALTH_CHECK_INTERVAL'],
            bootstrap_ttl=config['BOOTSTRAP_TTL'],
            codec_ttl=config['CODEC_TTL'],
            reuse_window=config['STREAM_REUSE_WINDOW'],
            stream_channel=config['STREAM_CHANNEL'],
            start_timeout=config['STREAM_START_TIMEOUT'],
            ffmpeg_path=config['FFMPEG_PATH'],
        )
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**options)

    # ------------------------------------------------------------------
    # Connections and bootstrap
    # ------------------------------------------------------------------

    async def connection_for(self, session):
        if not (session.username and session.password):
            raise MissingCredentials()
        return await self.connections.get_connection(
            session.base_url, session.username, session.password, session.allow_self_signed)

    async def get_bootstrap(self, session) -> dict:
        handle = await self.connection_for(session)
        key = connection_key(session.base_url, session.username)

        cached = self.bootstraps.get(key)
        if cached is not None:
            return cached

        try:
            bootstrap = await race_with_timeout(
                handle.fetch_bootstrap(),
                timeout=self.login_timeout,
                description=f'Bootstrap fetch from {session.base_url}',
            )
        except Exception as e:
            print(f'[Protect] Bootstrap fetch failed for {key}: {e}')
            raise

        bootstrap = bootstrap or {}
        self.bootstraps.put(key, bootstrap)
        return bootstrap

    async def list_cameras(self, session) -> list:
        bootstrap = await self.get_bootstrap(session)
        return [simplify_camera(c) for c in bootstrap.get('cameras') or []]

    async def find_camera(self, session, camera_id: str) -> dict:
        bootstrap = await self.get_bootstrap(session)
        for camera in bootstrap.get('cameras') or []:
            if camera_id in (camera.get('id'), camera.get('mac'), camera.get('uuid')):
                return camera
        raise CameraNotFound()

    # ------------------------------------------------------------------
    # Live video
    # ------------------------------------------------------------------

    async def _open_live(self, handle, session, camera_id: str):
        url = handle.stream_url(camera_id, self.stream_channel)
        live = self._stream_factory(
            camera_id, url,
            verify_tls=not session.allow_self_signed,
            ffmpeg_path=self.ffmpeg_path,
        )
        try:
            if not await live.start():
                raise StreamError()
            await live.get_init_segment(self.start_timeout)
        except BaseException:
            await live.stop()
            raise
        return live

    async def get_codec(self, session, camera_id: str) -> str:
        """Codec string for a camera, probing a short-lived stream on a cache miss"""
        camera = await self.find_camera(session, camera_id)
        camera_id = camera.get('id') or camera_id

        codec = self.codecs.get(camera_id)
        if codec is not None:
            return codec

        handle = await self.connection_for(session)
        live = await self._open_live(handle, session, camera_id)
        try:
            codec = live.codec
        finally:
            await live.stop()

        if not codec:
            raise StreamError(f'Camera {camera_id} did not report a codec')
        self.codecs.put(camera_id, codec)
        print(f'[Stream] Codec for {camera_id}: {codec}')
        return codec

    async def open_stream(self, session, camera_id: str):
        """Subscribe to the camera's live stream, sharing one opened moments ago"""
        camera = await self.find_camera(session, camera_id)
        camera_id = camera.get('id') or camera_id
        handle = await self.connection_for(session)

        def factory():
            return self._open_live(handle, session, camera_id)

        live = await self.streams.get_or_create(camera_id, factory)
        try:
            return live.subscribe()
        except StreamError:
            # The reused stream died in the meantime; start over once
            await self.streams.remove(camera_id, live)
            live = await self.streams.get_or_create(camera_id, factory)
            return live.subscribe()

    async def close_stream(self, subscription) -> bool:
        """Release a subscription; stop and evict the stream once nobody reads it"""
        live = subscription.stream
        subscription.close()
        if live.subscriber_count > 0:
            return False
        removed = await self.streams.remove(live.camera_id, live)
        if not removed:
            await live.stop()
        return True

    async def shutdown(self):
        await self.streams.stop_all()
        await self.connections.close_all()
        self.bootstraps.clear()
        self.codecs.clear()
