"""
Checksums used by the GT06 wire protocol
CRC-16/X-25 (reflected, poly 0x8408, init 0xFFFF, complemented result)
"""
from typing import List

CRC16_POLY = 0x8408
CRC16_INIT = 0xFFFF


def _build_table() -> List[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC16_POLY
            else:
                crc >>= 1
        table.append(crc)
    return table


CRC16_TABLE = tuple(_build_table())


def crc16(data: bytes) -> int:
    """Table driven CRC-16/X-25"""
    crc = CRC16_INIT
    for byte in data:
        crc = (crc >> 8) ^ CRC16_TABLE[(crc ^ byte) & 0xFF]
    return ~crc & 0xFFFF


def crc16_bitwise(data: bytes) -> int:
    """Bit-at-a-time CRC-16/X-25, same result as crc16()"""
    crc = CRC16_INIT
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC16_POLY
            else:
                crc >>= 1
    return ~crc & 0xFFFF


def sum16(data: bytes) -> int:
    """Additive 16-bit checksum used by early GT06 firmware handling"""
    return sum(data) & 0xFFFF
