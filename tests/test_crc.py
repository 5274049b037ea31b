"""
CRC-16/X-25 and additive checksum tests
"""
from tcp_server.protocols.crc import CRC16_TABLE, crc16, crc16_bitwise, sum16


def test_crc16_check_value():
    assert crc16(b'123456789') == 0x906E


def test_crc16_empty_input():
    assert crc16(b'') == 0x0000


def test_table_matches_bitwise():
    samples = [
        b'\x00',
        b'\xff' * 16,
        bytes(range(256)),
        bytes.fromhex('1101086701007000155880751F410001'),
        bytes.fromhex('05010001'),
    ]
    for data in samples:
        assert crc16(data) == crc16_bitwise(data)


def test_table_shape():
    assert len(CRC16_TABLE) == 256
    assert CRC16_TABLE[0] == 0x0000
    assert CRC16_TABLE[128] == 0x8408


def test_login_checksum():
    # Length byte through serial number of the reference login frame
    assert crc16(bytes.fromhex('1101086701007000155880751F410001')) == 0x2947


def test_sum16_wraps():
    assert sum16(b'\x01\x02\xff') == 0x0102
    assert sum16(b'\xff' * 300) == (0xFF * 300) & 0xFFFF
