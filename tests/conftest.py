"""
Shared fixtures: a controllable clock, a fake uiprotect client and a fake
live stream, plus a Flask app wired to them.
"""
import asyncio
import copy
import struct

import pytest

from protectview import create_app
from protectview.config import TestingConfig
from protectview.errors import StreamError
from protectview.services.livestream import Subscription


def make_box(box_type: str, payload: bytes = b'') -> bytes:
    return struct.pack('>I', 8 + len(payload)) + box_type.encode('latin-1') + payload


def make_init_segment(profile=0x64, compat=0x00, level=0x28, audio=False) -> bytes:
    avcc = make_box('avcC', bytes([1, profile, compat, level, 0xFF]))
    entries = make_box('avc1', b'\x00' * 78 + avcc)
    if audio:
        entries += make_box('mp4a', b'\x00' * 28)
    ftyp = make_box('ftyp', b'isom\x00\x00\x02\x00isomiso2avc1mp41')
    moov = make_box('moov', make_box('trak', make_box('stsd', entries)))
    return ftyp + moov


BOOTSTRAP = {
    'nvr': {'id': 'nvr-1', 'name': 'Office NVR'},
    'cameras': [
        {'id': 'cam-1', 'mac': 'AABBCCDDEE01', 'name': 'Front Door', 'isConnected': True},
        {'id': 'cam-2', 'mac': 'AABBCCDDEE02', 'name': 'Garage', 'state': 'DISCONNECTED'},
    ],
    'lights': [],
    'sensors': [],
    'chimes': [],
    'viewers': [],
}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProtectClient:
    """Stands in for services.protect_client.ProtectClient"""

    def __init__(self, nvr, base_url, username, password, allow_self_signed):
        self.nvr = nvr
        self.base_url = base_url
        self.username = username
        self.password = password
        self.allow_self_signed = allow_self_signed
        self.authenticated = False
        self.closed = False
        self.signal = None

    def login_signal(self):
        return self.signal

    async def login(self):
        self.nvr.login_calls += 1
        await asyncio.sleep(self.nvr.login_delay)
        if self.nvr.login_error is not None:
            raise self.nvr.login_error
        self.authenticated = self.nvr.login_result
        return self.nvr.login_result

    def is_authenticated(self):
        return self.authenticated

    async def fetch_bootstrap(self):
        self.nvr.bootstrap_calls += 1
        return copy.deepcopy(self.nvr.bootstrap)

    def stream_url(self, camera_id, channel=0):
        return f'rtsps://nvr.local:7441/{camera_id}-{channel}'

    async def close(self):
        self.closed = True


class FakeNvr:
    """Client factory that records every client it hands out"""

    def __init__(self):
        self.bootstrap = copy.deepcopy(BOOTSTRAP)
        self.login_delay = 0.01
        self.login_result = True
        self.login_error = None
        self.login_calls = 0
        self.bootstrap_calls = 0
        self.clients = []

    def __call__(self, base_url, username, password, allow_self_signed):
        client = FakeProtectClient(self, base_url, username, password, allow_self_signed)
        self.clients.append(client)
        return client


class FakeLiveStream:
    """Stands in for services.livestream.LiveStream"""

    instances = []
    segments = [b'segment-1', b'segment-2', b'segment-3']
    codec_value = 'avc1.640028'
    fail_start = False
    end_after_segments = False

    def __init__(self, camera_id, url, verify_tls=True, ffmpeg_path='ffmpeg'):
        self.camera_id = camera_id
        self.url = url
        self.verify_tls = verify_tls
        self.codec = None
        self.init_segment = None
        self.last_error = None
        self.started = False
        self.stopped = False
        self._subscribers = []
        FakeLiveStream.instances.append(self)

    async def start(self):
        await asyncio.sleep(0.01)
        if self.fail_start:
            raise StreamError('camera refused the stream')
        self.started = True
        return True

    async def get_init_segment(self, timeout=None):
        self.init_segment = make_init_segment()
        self.codec = self.codec_value
        return self.init_segment

    def subscribe(self):
        if self.stopped:
            raise StreamError('Livestream has ended')
        subscription = Subscription(self, self.init_segment)
        for segment in self.segments:
            subscription.queue.put_nowait(segment)
        if self.end_after_segments:
            subscription.queue.put_nowait(None)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription):
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self):
        return len(self._subscribers)

    async def stop(self):
        self.stopped = True
        for subscription in self._subscribers:
            subscription.queue.put_nowait(None)
        self._subscribers.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_nvr():
    return FakeNvr()


@pytest.fixture(autouse=True)
def reset_fake_streams():
    FakeLiveStream.instances = []
    FakeLiveStream.fail_start = False
    FakeLiveStream.end_after_segments = False
    yield
    FakeLiveStream.instances = []


@pytest.fixture
def app(fake_nvr, clock):
    app = create_app(TestingConfig, client_factory=fake_nvr,
                     stream_factory=FakeLiveStream, clock=clock)
    yield app
    app.extensions['protect_cleanup']()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def nvr(app):
    return app.extensions['nvr']


@pytest.fixture
def login(client):
    """Create a credentials session for the test client"""
    def _login(**overrides):
        body = {
            'baseUrl': 'https://10.0.0.1',
            'username': 'admin',
            'password': 'x',
            'allowSelfSigned': True,
        }
        body.update(overrides)
        return client.post('/api/session', json=body)
    return _login
