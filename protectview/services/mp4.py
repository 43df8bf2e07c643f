"""
Fragmented MP4 framing helpers.

ffmpeg does the remuxing; this module only splits its output into top-level
boxes and reads the codec parameters the browser needs for MediaSource.
"""
import asyncio
import struct

INIT_BOXES = ('ftyp', 'moov')


class BoxError(ValueError):
    pass


async def read_box(reader: asyncio.StreamReader):
    """
    Read one top-level box. Returns (box_type, raw_bytes), or None on a clean
    end of stream between boxes.
    """
    try:
        header = await reader.readexactly(8)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise BoxError('Stream ended inside a box header') from e

    size, box_type = struct.unpack('>I4s', header)
    if size == 1:
        extended = await reader.readexactly(8)
        size = struct.unpack('>Q', extended)[0]
        header += extended
    elif size == 0:
        raise BoxError('Open-ended boxes are not supported in a live stream')

    if size < len(header):
        raise BoxError(f'Invalid box size {size}')

    body = await reader.readexactly(size - len(header))
    return box_type.decode('latin-1'), header + body


def _avc_codec(moov: bytes, entry: str):
    idx = moov.find(b'avcC')
    if idx < 0 or idx + 8 > len(moov):
        return None
    # configurationVersion, AVCProfileIndication, profile_compatibility, AVCLevelIndication
    profile, compat, level = moov[idx + 5], moov[idx + 6], moov[idx + 7]
    return f'{entry}.{profile:02x}{compat:02x}{level:02x}'


def _reverse_bits32(value: int) -> int:
    result = 0
    for _ in range(32):
        result = (result << 1) | (value & 1)
        value >>= 1
    return result


def _hevc_codec(moov: bytes, entry: str):
    idx = moov.find(b'hvcC')
    if idx < 0 or idx + 4 + 13 > len(moov):
        return None
    config = moov[idx + 4:idx + 4 + 13]

    profile_space = config[1] >> 6
    tier = (config[1] >> 5) & 0x01
    profile_idc = config[1] & 0x1F
    compat = struct.unpack('>I', config[2:6])[0]
    constraints = list(config[6:12])
    level = config[12]

    while constraints and constraints[-1] == 0:
        constraints.pop()

    parts = [
        entry,
        f"{'' if profile_space == 0 else 'ABC'[profile_space - 1]}{profile_idc}",
        f'{_reverse_bits32(compat):X}',
        f"{'H' if tier else 'L'}{level}",
    ]
    parts.extend(f'{b:02X}' for b in constraints)
    return '.'.join(parts)


def codec_string(init_segment: bytes) -> str:
    """
    RFC 6381 codecs value for an init segment, e.g. 'avc1.640028,mp4a.40.2'.
    Raises BoxError when no supported video track is described.
    """
    moov_at = init_segment.find(b'moov')
    moov = init_segment[moov_at:] if moov_at >= 0 else init_segment

    video = None
    for entry in ('avc1', 'avc3'):
        if entry.encode() in moov:
            video = _avc_codec(moov, entry)
            break
    else:
        for entry in ('hvc1', 'hev1'):
            if entry.encode() in moov:
                video = _hevc_codec(moov, entry)
                break

    if video is None:
        raise BoxError('No supported video track in init segment')

    codecs = [video]
    if b'mp4a' in moov:
        codecs.append('mp4a.40.2')
    return ','.join(codecs)
