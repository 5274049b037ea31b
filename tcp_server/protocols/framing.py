"""
GT06 frame reassembly
Turns an unbounded byte stream into complete, validated frames.

Standard frame (0x78 0x78):
    [start 2][length 1][protocol 1][payload length-5][serial 2][checksum 2][0D 0A]
Extended frame (0x79 0x79):
    [start 2][length 2][protocol 1][payload length-1][0D 0A]
"""
import logging
import struct
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .crc import crc16, sum16

logger = logging.getLogger(__name__)

START_STANDARD = b'\x78\x78'
START_EXTENDED = b'\x79\x79'
STOP_BITS = b'\x0D\x0A'

MIN_BUFFER = 5  # Smallest amount worth scanning
MIN_STANDARD_FRAME = 10  # start + length + protocol + serial + checksum + stop
MIN_EXTENDED_FRAME = 7  # start + length(2) + protocol + stop
DEFAULT_MAX_FRAME_LENGTH = 1024

# Inbound checksum policies
CHECKSUM_IGNORE = 'ignore'
CHECKSUM_CRC16 = 'crc16'
CHECKSUM_SUM16 = 'sum16'
CHECKSUM_POLICIES = (CHECKSUM_IGNORE, CHECKSUM_CRC16, CHECKSUM_SUM16)


@dataclass(frozen=True)
class Frame:
    """One complete frame, start marker through stop marker"""
    raw: bytes
    extended: bool = False

    @property
    def length(self) -> int:
        if self.extended:
            return struct.unpack('>H', self.raw[2:4])[0]
        return self.raw[2]

    @property
    def protocol(self) -> int:
        return self.raw[4] if self.extended else self.raw[3]

    @property
    def payload(self) -> bytes:
        """Bytes between the protocol code and the trailer"""
        if self.extended:
            return self.raw[5:-2]
        return self.raw[4:-6]

    @property
    def serial_number(self) -> int:
        if self.extended:
            return 0
        return struct.unpack('>H', self.raw[-6:-4])[0]

    @property
    def checksum(self) -> int:
        if self.extended:
            return 0
        return struct.unpack('>H', self.raw[-4:-2])[0]

    def checksum_span(self) -> bytes:
        """Bytes covered by the trailing checksum (length through serial)"""
        return self.raw[2:-4]


def encode_frame(protocol: int, payload: bytes = b'', serial_number: int = 0) -> bytes:
    """Build a standard frame with a CRC-16/X-25 checksum"""
    body = struct.pack('>BB', len(payload) + 5, protocol) + payload + struct.pack('>H', serial_number & 0xFFFF)
    return START_STANDARD + body + struct.pack('>H', crc16(body)) + STOP_BITS


def encode_extended_frame(protocol: int, payload: bytes = b'') -> bytes:
    """Build an extended (0x79 0x79) frame"""
    return START_EXTENDED + struct.pack('>HB', len(payload) + 1, protocol) + payload + STOP_BITS


def verify_checksum(frame: Frame, policy: str = CHECKSUM_IGNORE) -> bool:
    """Check the inbound checksum of a frame under the given policy"""
    if frame.extended or policy == CHECKSUM_IGNORE:
        return True
    if policy == CHECKSUM_CRC16:
        return crc16(frame.checksum_span()) == frame.checksum
    if policy == CHECKSUM_SUM16:
        return sum16(frame.checksum_span()) == frame.checksum
    raise ValueError(f"Unknown checksum policy: {policy}")


class FrameReassembler:
    """Per-connection byte accumulator producing complete frames"""

    def __init__(self, max_frame_length: int = DEFAULT_MAX_FRAME_LENGTH,
                 checksum_policy: str = CHECKSUM_IGNORE):
        if checksum_policy not in CHECKSUM_POLICIES:
            raise ValueError(f"Unknown checksum policy: {checksum_policy}")
        self.max_frame_length = max_frame_length
        self.checksum_policy = checksum_policy
        self.buffer = bytearray()
        self.discarded_bytes = 0
        self.rejected_frames = 0

    @property
    def pending(self) -> int:
        """Number of bytes waiting for the rest of a frame"""
        return len(self.buffer)

    def reset(self):
        """Drop any partially buffered frame"""
        self.buffer.clear()

    def feed(self, data: bytes) -> List[Frame]:
        """Append a chunk and return every frame it completes, in order"""
        self.buffer.extend(data)
        return list(self.frames())

    def frames(self) -> Iterator[Frame]:
        """Yield complete frames currently held in the accumulator"""
        while len(self.buffer) >= MIN_BUFFER:
            index, extended = self._find_start()

            if index == -1:
                self._drop_garbage()
                return

            if index > 0:
                logger.debug(f"Skipping {index} bytes of noise before start marker")
                self._discard(index)
                if len(self.buffer) < MIN_BUFFER:
                    return

            header = self._frame_size(extended)
            if header is None:
                return  # Length field incomplete
            total_length, minimum = header

            if total_length < minimum or total_length > self.max_frame_length:
                logger.warning(f"Rejecting frame with declared size {total_length} bytes, resynchronizing")
                self.rejected_frames += 1
                self._discard(1)
                continue

            if len(self.buffer) < total_length:
                later = self._later_frame_start()
                if later == -1:
                    return  # Wait for the rest of the frame
                logger.warning(f"Abandoning incomplete frame of declared size {total_length}, "
                               f"resynchronizing {later} bytes ahead")
                self.rejected_frames += 1
                self._discard(later)
                continue

            candidate = bytes(self.buffer[:total_length])
            if candidate[-2:] != STOP_BITS:
                logger.warning(f"Missing stop bits in candidate frame {candidate[:8].hex().upper()}..., resynchronizing")
                self.rejected_frames += 1
                self._discard(1)
                continue

            frame = Frame(candidate, extended)
            if not verify_checksum(frame, self.checksum_policy):
                logger.warning(f"Checksum mismatch ({self.checksum_policy}) in frame {candidate.hex().upper()}")
                self.rejected_frames += 1
                self._discard(total_length)
                continue

            del self.buffer[:total_length]
            yield frame

    def _find_start(self) -> Tuple[int, bool]:
        """Locate the first start marker of either variant"""
        standard = self.buffer.find(START_STANDARD)
        extended = self.buffer.find(START_EXTENDED)
        if standard == -1 and extended == -1:
            return -1, False
        if extended == -1 or (standard != -1 and standard < extended):
            return standard, False
        return extended, True

    def _frame_size(self, extended: bool, start: int = 0) -> Optional[Tuple[int, int]]:
        """Total frame size and variant minimum, or None if the header is short"""
        if extended:
            if len(self.buffer) < start + 4:
                return None
            length = struct.unpack('>H', self.buffer[start + 2:start + 4])[0]
            return length + 6, MIN_EXTENDED_FRAME
        if len(self.buffer) < start + 3:
            return None
        return self.buffer[start + 2] + 5, MIN_STANDARD_FRAME

    def _later_frame_start(self) -> int:
        """
        Offset of a later start marker that already holds a whole, valid frame,
        or -1. Covers a marker byte of noise directly in front of a real frame,
        which makes the frame's own start byte read as a length.
        """
        index = 1
        while True:
            found = [i for i in (self.buffer.find(START_STANDARD, index),
                                 self.buffer.find(START_EXTENDED, index)) if i != -1]
            if not found:
                return -1
            index = min(found)
            extended = self.buffer[index] == START_EXTENDED[0]
            header = self._frame_size(extended, index)
            if header is not None:
                total_length, minimum = header
                end = index + total_length
                if (minimum <= total_length <= self.max_frame_length and end <= len(self.buffer)
                        and self.buffer[end - 2:end] == STOP_BITS):
                    frame = Frame(bytes(self.buffer[index:end]), extended)
                    if verify_checksum(frame, self.checksum_policy):
                        return index
            index += 1

    def _drop_garbage(self):
        """No start marker anywhere: keep only a byte that may begin one"""
        keep = 1 if self.buffer[-1] in (START_STANDARD[0], START_EXTENDED[0]) else 0
        dropped = len(self.buffer) - keep
        if dropped:
            logger.warning(f"Discarding {dropped} bytes without a start marker")
            self._discard(dropped)

    def _discard(self, count: int):
        del self.buffer[:count]
        self.discarded_bytes += count
