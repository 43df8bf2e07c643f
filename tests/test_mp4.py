import asyncio
import struct

import pytest

from protectview.services.mp4 import BoxError, codec_string, read_box

from .conftest import make_box, make_init_segment


def _reader(data: bytes) -> asyncio.StreamReader:
    # Must be called inside the running loop
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


async def _read_one(data: bytes):
    return await read_box(_reader(data))


def test_read_boxes_in_order():
    data = make_box('ftyp', b'isom') + make_box('moof', b'\x01' * 10) + make_box('mdat', b'\x02' * 100)

    async def scenario():
        reader = _reader(data)
        boxes = []
        while True:
            box = await read_box(reader)
            if box is None:
                return boxes
            boxes.append(box)

    boxes = asyncio.run(scenario())
    assert [t for t, _ in boxes] == ['ftyp', 'moof', 'mdat']
    assert b''.join(raw for _, raw in boxes) == data


def test_read_box_with_64bit_size():
    payload = b'\x03' * 20
    data = struct.pack('>I4sQ', 1, b'mdat', 16 + len(payload)) + payload

    box_type, raw = asyncio.run(_read_one(data))
    assert box_type == 'mdat'
    assert raw == data


def test_truncated_box_raises():
    data = make_box('mdat', b'\x00' * 50)[:30]

    with pytest.raises(asyncio.IncompleteReadError):
        asyncio.run(_read_one(data))


def test_truncated_header_raises():
    with pytest.raises(BoxError):
        asyncio.run(_read_one(b"\x00\x00\x00"))


def test_avc_codec_string():
    assert codec_string(make_init_segment(0x64, 0x00, 0x28)) == 'avc1.640028'
    assert codec_string(make_init_segment(0x4D, 0x40, 0x1F)) == 'avc1.4d401f'


def test_avc_with_aac_audio():
    assert codec_string(make_init_segment(audio=True)) == 'avc1.640028,mp4a.40.2'


def test_hevc_codec_string():
    hvcc = bytes([1, 0x01]) + struct.pack('>I', 0x60000000) + bytes([0x90, 0, 0, 0, 0, 0, 93])
    moov = make_box('moov', make_box('hvc1', b'\x00' * 78 + make_box('hvcC', hvcc + b'\x00' * 10)))

    assert codec_string(make_box('ftyp', b'isom') + moov) == 'hvc1.1.6.L93.90'


def test_unknown_codec_raises():
    moov = make_box('moov', make_box('trak', b'\x00' * 16))
    with pytest.raises(BoxError):
        codec_string(make_box('ftyp', b'isomavc1') + moov)
