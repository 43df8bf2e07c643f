import asyncio

import pytest

from protectview.errors import StreamError, UpstreamTimeout
from protectview.services import livestream
from protectview.services.livestream import LiveStream

from .conftest import make_box, make_init_segment

URL = 'rtsps://nvr.local:7441/abc123?enableSrtp'


class FakeProcess:
    pid = 4242

    def __init__(self):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode = None
        self.terminated = False

    def terminate(self):
        self.terminated = True
        self.returncode = -15
        self.stdout.feed_eof()
        self.stderr.feed_eof()

    def kill(self):
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def spawned(monkeypatch):
    """Replace the ffmpeg launch with a process whose stdout the test feeds"""
    calls = []

    async def fake_exec(*args, **kwargs):
        process = FakeProcess()
        calls.append((args, process))
        return process

    monkeypatch.setattr(livestream.asyncio, 'create_subprocess_exec', fake_exec)
    return calls


def segment(n: int) -> bytes:
    return make_box('moof', bytes([n]) * 8) + make_box('mdat', bytes([n]) * 64)


def test_command_verifies_tls_by_default():
    cmd = LiveStream('cam-1', URL)._command()
    assert cmd[cmd.index('-tls_verify') + 1] == '1'
    assert cmd[cmd.index('-i') + 1] == URL
    assert 'frag_keyframe+empty_moov+default_base_moof' in cmd
    assert cmd[-1] == 'pipe:1'


def test_command_skips_tls_verification_for_self_signed():
    cmd = LiveStream('cam-1', URL, verify_tls=False)._command()
    assert '-tls_verify' not in cmd


def test_init_segment_codec_and_fanout(spawned):
    init = make_init_segment()

    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        process = spawned[0][1]
        process.stdout.feed_data(init)

        received_init = await live.get_init_segment(1)
        first = live.subscribe()
        second = live.subscribe()

        process.stdout.feed_data(segment(1))
        chunks = [await first.next_chunk(1), await first.next_chunk(1),
                  await second.next_chunk(1), await second.next_chunk(1)]

        await live.stop()
        ended = await first.next_chunk(1)
        return live, received_init, chunks, ended, process

    live, received_init, chunks, ended, process = asyncio.run(scenario())

    assert received_init == init
    assert live.codec == 'avc1.640028'
    assert chunks == [init, segment(1), init, segment(1)]
    assert ended is None
    assert live.segments_sent == 1
    assert process.terminated


def test_upstream_exit_before_video_reports_ffmpeg_error(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        process = spawned[0][1]
        process.stderr.feed_data(b'rtsps://nvr.local:7441: 401 Unauthorized\n')
        process.stderr.feed_eof()
        process.stdout.feed_eof()
        try:
            await live.get_init_segment(1)
        finally:
            await live.stop()

    with pytest.raises(StreamError, match='401 Unauthorized'):
        asyncio.run(scenario())


def test_init_segment_timeout(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        try:
            await live.get_init_segment(0.05)
        finally:
            await live.stop()

    with pytest.raises(UpstreamTimeout):
        asyncio.run(scenario())


def test_subscribe_before_init_segment_fails(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        try:
            live.subscribe()
        finally:
            await live.stop()

    with pytest.raises(StreamError, match='not ready'):
        asyncio.run(scenario())


def test_subscribe_after_stop_fails(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        spawned[0][1].stdout.feed_data(make_init_segment())
        await live.get_init_segment(1)
        await live.stop()
        live.subscribe()

    with pytest.raises(StreamError, match='ended'):
        asyncio.run(scenario())


def test_missing_ffmpeg_raises_stream_error(monkeypatch):
    async def missing(*args, **kwargs):
        raise FileNotFoundError('ffmpeg')

    monkeypatch.setattr(livestream.asyncio, 'create_subprocess_exec', missing)

    with pytest.raises(StreamError, match='Could not launch'):
        asyncio.run(LiveStream('cam-1', URL, ffmpeg_path='/missing/ffmpeg').start())


def test_unsubscribe_releases_queue(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        spawned[0][1].stdout.feed_data(make_init_segment())
        await live.get_init_segment(1)
        subscription = live.subscribe()
        subscription.close()
        count = live.subscriber_count
        await live.stop()
        return subscription, count

    subscription, count = asyncio.run(scenario())
    assert count == 0
    assert subscription.queue.empty()


def test_stderr_is_read_while_streaming(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        process = spawned[0][1]
        process.stdout.feed_data(make_init_segment())
        await live.get_init_segment(1)
        for _ in range(50):
            process.stderr.feed_data(b'[h264 @ 0x55] non-existing PPS 0 referenced\n')
        process.stderr.feed_data(b'[rtsp @ 0x55] RTP: missed 12 packets\n')
        await asyncio.sleep(0.05)
        running = live.is_running
        last_error = live.last_error
        await live.stop()
        return last_error, running

    last_error, running = asyncio.run(scenario())
    assert running
    assert last_error == '[rtsp @ 0x55] RTP: missed 12 packets'


def test_read_timeout_reports_last_ffmpeg_error(spawned):
    async def scenario():
        live = LiveStream('cam-1', URL)
        await live.start()
        process = spawned[0][1]
        process.stdout.feed_data(make_init_segment())
        await live.get_init_segment(1)
        subscription = live.subscribe()
        await subscription.next_chunk(1)
        process.stderr.feed_data(b'rtsps://nvr.local:7441: Connection timed out\n')
        try:
            await subscription.next_chunk(0.05)
        finally:
            await live.stop()

    with pytest.raises(UpstreamTimeout, match='ffmpeg: rtsps://nvr.local:7441: Connection timed out'):
        asyncio.run(scenario())
