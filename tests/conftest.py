import struct
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from database.db_conf import create_db_engine, init_db
from database.repository import PacketStore
from tcp_server.protocols import FrameReassembler, GT06ProtocolHandler, encode_frame

TERMINAL_ID = '0867010070001558'
LOGIN_FRAME = bytes.fromhex('78781101086701007000155880751F41000129470D0A')

LAT_RAW = 0x026B3F3E  # 22.546097
LON_RAW = 0x0C395DC0  # 113.936747
NORTH_POSITIONED = 0x1400


def build_gps_lbs_payload(when=datetime(2024, 10, 17, 12, 30, 0), gps_info=0xC9,
                          lat_raw=LAT_RAW, lon_raw=LON_RAW, speed=60,
                          course_status=NORTH_POSITIONED | 21, with_coordinates=True):
    """Date/time, GPS block and a standard LBS block (MCC 460, MNC 0, LAC 0x287D, cell 0x1FB8)"""
    payload = bytes([when.year - 2000, when.month, when.day, when.hour, when.minute, when.second, gps_info])
    if with_coordinates:
        payload += struct.pack('>IIBH', lat_raw, lon_raw, speed, course_status)
    payload += struct.pack('>HBH', 460, 0, 0x287D) + (0x1FB8).to_bytes(3, 'big')
    return payload


@pytest.fixture
def gps_lbs_payload():
    return build_gps_lbs_payload


@pytest.fixture
def login_frame():
    return LOGIN_FRAME


@pytest.fixture
def gps_frame():
    return encode_frame(0x12, build_gps_lbs_payload(), serial_number=2)


@pytest.fixture
def alarm_frame():
    return encode_frame(0x16, bytes([0x01]) + build_gps_lbs_payload(), serial_number=3)


@pytest.fixture
def wifi_frame():
    payload = bytes([24, 10, 17, 12, 31, 0, 2])
    payload += bytes.fromhex('A0B1C2D3E4F5') + bytes([0x45])
    payload += bytes.fromhex('112233445566') + bytes([0x50])
    return encode_frame(0x30, payload, serial_number=4)


@pytest.fixture
def decode():
    """Decode a single wire frame with a fresh handler"""
    handler = GT06ProtocolHandler()

    def _decode(raw: bytes):
        frames = FrameReassembler().feed(raw)
        assert len(frames) == 1
        return handler.parse_message(frames[0])

    _decode.handler = handler
    return _decode


@pytest.fixture
def store():
    """PacketStore on a private in-memory SQLite database"""
    engine = create_db_engine('sqlite://')
    init_db(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield PacketStore(session_factory)
    engine.dispose()
