"""
GPS Tracker Protocol Handlers
"""
from .base import BaseProtocolHandler
from .crc import crc16, crc16_bitwise, sum16
from .framing import (
    Frame,
    FrameReassembler,
    encode_frame,
    encode_extended_frame,
    verify_checksum,
    CHECKSUM_POLICIES,
)
from .gt06 import GT06ProtocolHandler, build_ack, PROTOCOL_NAMES, ACK_REQUIRED
from .records import DecodedRecord


__all__ = [
    'BaseProtocolHandler',
    'GT06ProtocolHandler',
    'DecodedRecord',
    'Frame',
    'FrameReassembler',
    'build_ack',
    'crc16',
    'crc16_bitwise',
    'sum16',
    'encode_frame',
    'encode_extended_frame',
    'verify_checksum',
    'CHECKSUM_POLICIES',
    'PROTOCOL_NAMES',
    'ACK_REQUIRED',
]
