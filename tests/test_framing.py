"""
Frame reassembly: splitting, resynchronisation and checksum policies
"""
import struct

import pytest

from tcp_server.protocols import (
    Frame, FrameReassembler, encode_extended_frame, encode_frame, sum16, verify_checksum,
)


def test_single_login_frame(login_frame):
    frames = FrameReassembler().feed(login_frame)
    assert len(frames) == 1
    frame = frames[0]
    assert frame.raw == login_frame
    assert not frame.extended
    assert frame.length == 0x11
    assert frame.protocol == 0x01
    assert frame.serial_number == 0x0001
    assert frame.checksum == 0x2947
    assert frame.payload == bytes.fromhex('086701007000155880751F41')


def test_encode_frame_matches_login(login_frame):
    payload = bytes.fromhex('086701007000155880751F41')
    assert encode_frame(0x01, payload, serial_number=1) == login_frame


def test_byte_at_a_time(login_frame, gps_frame):
    stream = login_frame + gps_frame
    reassembler = FrameReassembler()
    frames = []
    for byte in stream:
        frames.extend(reassembler.feed(bytes([byte])))
    assert [f.raw for f in frames] == [login_frame, gps_frame]
    assert reassembler.pending == 0


def test_every_split_point(login_frame, gps_frame):
    stream = login_frame + gps_frame
    for cut in range(1, len(stream)):
        reassembler = FrameReassembler()
        frames = reassembler.feed(stream[:cut]) + reassembler.feed(stream[cut:])
        assert [f.raw for f in frames] == [login_frame, gps_frame], cut


def test_partial_frame_waits(login_frame):
    reassembler = FrameReassembler()
    assert reassembler.feed(login_frame[:10]) == []
    assert reassembler.pending == 10
    assert len(reassembler.feed(login_frame[10:])) == 1


def test_noise_before_frame(login_frame):
    reassembler = FrameReassembler()
    frames = reassembler.feed(b'\x00\x01\x02\xAA' + login_frame)
    assert [f.raw for f in frames] == [login_frame]
    assert reassembler.discarded_bytes == 4


@pytest.mark.parametrize('noise', [
    b'',
    b'\x78',
    b'\x00\x78',
    b'\x79',
    b'\x79\x79',
    b'\x01\x02\x78\x78',
    b'\x78\x78\x78',
    b'\xAA' * 7 + b'\x79',
    bytes(range(0x70, 0x80)),
])
def test_any_noise_before_frame(login_frame, noise):
    reassembler = FrameReassembler(checksum_policy='crc16')
    frames = reassembler.feed(noise + login_frame)
    assert [f.raw for f in frames] == [login_frame]
    assert reassembler.pending == 0


def test_marker_noise_before_split_frame(login_frame):
    reassembler = FrameReassembler()
    assert reassembler.feed(b'\x00\x78' + login_frame[:10]) == []
    frames = reassembler.feed(login_frame[10:])
    assert [f.raw for f in frames] == [login_frame]


def test_garbage_without_marker_is_dropped():
    reassembler = FrameReassembler()
    assert reassembler.feed(b'\x01\x02\x03\x04\x05\x06') == []
    assert reassembler.pending == 0


def test_trailing_marker_byte_is_kept(login_frame):
    reassembler = FrameReassembler()
    assert reassembler.feed(b'\x01\x02\x03\x04\x78') == []
    assert reassembler.pending == 1
    frames = reassembler.feed(login_frame[1:])
    assert [f.raw for f in frames] == [login_frame]


def test_bad_stop_marker_resyncs(login_frame):
    broken = login_frame[:-2] + b'\x00\x00'
    reassembler = FrameReassembler()
    frames = reassembler.feed(broken + login_frame)
    assert [f.raw for f in frames] == [login_frame]
    assert reassembler.rejected_frames == 1


def test_declared_size_too_small(login_frame):
    reassembler = FrameReassembler()
    frames = reassembler.feed(b'\x78\x78\x02\x01\x0D\x0A' + login_frame)
    assert [f.raw for f in frames] == [login_frame]
    assert reassembler.rejected_frames >= 1


def test_declared_size_over_limit(login_frame):
    reassembler = FrameReassembler(max_frame_length=20)
    assert reassembler.feed(login_frame) == []
    assert reassembler.rejected_frames == 1
    assert reassembler.pending == 0


def test_extended_frame():
    raw = encode_extended_frame(0x94, b'\x00\x01')
    assert raw == bytes.fromhex('79790003940001 0D0A'.replace(' ', ''))
    frames = FrameReassembler().feed(raw)
    assert len(frames) == 1
    frame = frames[0]
    assert frame.extended
    assert frame.length == 3
    assert frame.protocol == 0x94
    assert frame.payload == b'\x00\x01'
    assert frame.serial_number == 0
    assert frame.checksum == 0


def test_mixed_variants_keep_order(login_frame):
    extended = encode_extended_frame(0x98, b'ABC')
    frames = FrameReassembler().feed(extended + login_frame + extended)
    assert [f.extended for f in frames] == [True, False, True]


def test_crc_policy_rejects_corrupt_checksum(login_frame):
    corrupt = login_frame[:-4] + b'\x00\x00' + login_frame[-2:]

    strict = FrameReassembler(checksum_policy='crc16')
    frames = strict.feed(corrupt + login_frame)
    assert [f.raw for f in frames] == [login_frame]
    assert strict.rejected_frames == 1

    lenient = FrameReassembler()
    assert len(lenient.feed(corrupt + login_frame)) == 2


def test_sum16_policy(login_frame):
    body = b'\x05\x23\x00\x07'
    summed = b'\x78\x78' + body + struct.pack('>H', sum16(body)) + b'\x0D\x0A'

    reassembler = FrameReassembler(checksum_policy='sum16')
    frames = reassembler.feed(summed + login_frame)
    assert [f.raw for f in frames] == [summed]
    assert reassembler.rejected_frames == 1


def test_extended_frames_pass_any_policy():
    frame = Frame(encode_extended_frame(0x99, b'\x01'), extended=True)
    for policy in ('ignore', 'crc16', 'sum16'):
        assert verify_checksum(frame, policy)


def test_unknown_policy():
    with pytest.raises(ValueError):
        FrameReassembler(checksum_policy='md5')
    with pytest.raises(ValueError):
        verify_checksum(Frame(encode_frame(0x13)), 'md5')


def test_reset_drops_partial_frame(login_frame):
    reassembler = FrameReassembler()
    reassembler.feed(login_frame[:8])
    reassembler.reset()
    assert reassembler.pending == 0
    assert reassembler.feed(login_frame[8:]) == []
