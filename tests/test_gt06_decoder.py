"""
GT06 packet decoding
"""
import struct
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from tcp_server.protocols import build_ack, encode_extended_frame, encode_frame
from tcp_server.protocols.gt06 import GT06ProtocolHandler, PROTOCOL_NAMES


def test_login(decode, login_frame):
    record = decode(login_frame)
    assert record.protocol == 0x01
    assert record.protocol_name == 'LOGIN'
    assert record.terminal_id == '0867010070001558'
    assert record.device_type == 0x8075
    assert record.timezone_offset == 0x1F41
    assert record.serial_number == 0x0001
    assert record.checksum == 0x2947
    assert record.needs_response
    assert record.raw == login_frame.hex().upper()
    assert decode.handler.device_id == '0867010070001558'


def test_login_ack(decode, login_frame):
    record = decode(login_frame)
    assert decode.handler.create_response(record) == build_ack(1, 0x01)


def test_gps_lbs_fix(decode, gps_frame):
    record = decode(gps_frame)
    assert record.protocol_name == 'GPS_LBS_STATUS_2'
    assert not record.needs_response
    assert record.has_location

    gps = record.gps
    assert gps.gps_time == datetime(2024, 10, 17, 12, 30, 0, tzinfo=timezone.utc)
    assert gps.satellites == 9
    assert gps.latitude == pytest.approx(22.546097)
    assert gps.longitude == pytest.approx(113.936747)
    assert gps.speed == 60
    assert gps.course == 21
    assert gps.north_latitude
    assert gps.east_longitude
    assert gps.gps_positioned
    assert gps.gps_real_time

    assert record.lbs.mcc == 460
    assert record.lbs.mnc == 0
    assert record.lbs.lac == 0x287D
    assert record.lbs.cell_id == 0x1FB8
    assert record.additional_data is None


def test_coordinate_scaling(decode, gps_lbs_payload):
    record = decode(encode_frame(0x12, gps_lbs_payload(lat_raw=0x0C702F84, lon_raw=0x0C702F84)))
    expected = round(0x0C702F84 / 60 / 30000, 6)
    assert record.gps.latitude == expected
    assert record.gps.longitude == expected


def test_south_west_hemisphere(decode, gps_lbs_payload):
    record = decode(encode_frame(0x10, gps_lbs_payload(course_status=0x1800 | 180)))
    assert record.gps.latitude == pytest.approx(-22.546097)
    assert record.gps.longitude == pytest.approx(-113.936747)
    assert not record.gps.north_latitude
    assert not record.gps.east_longitude
    assert record.gps.course == 180


def test_differential_fix_is_not_real_time(decode, gps_lbs_payload):
    record = decode(encode_frame(0x12, gps_lbs_payload(course_status=0x3400)))
    assert not record.gps.gps_real_time
    assert record.gps.gps_positioned


def test_zero_gps_info_skips_coordinates(decode, gps_lbs_payload):
    record = decode(encode_frame(0x12, gps_lbs_payload(gps_info=0x00, with_coordinates=False)))
    assert record.gps.satellites == 0
    assert record.gps.latitude is None
    assert not record.has_location
    assert record.lbs.mcc == 460
    assert record.lbs.cell_id == 0x1FB8


def test_invalid_date_keeps_position(decode, gps_lbs_payload):
    record = decode(encode_frame(0x12, gps_lbs_payload().replace(b'\x18\x0A\x11', b'\x18\x0D\x11', 1)))
    assert record.gps.gps_time is None
    assert record.has_location


def test_short_gps_payload(decode):
    record = decode(encode_frame(0x12, b'\x18\x0A\x11'))
    assert record.gps is None
    assert record.additional_data == '180A11'


def test_truncated_coordinates_are_not_read_as_cell_tower(decode):
    payload = bytes([24, 10, 17, 12, 30, 0, 0xC9]) + struct.pack('>II', 0x026B3F3E, 0x0C395DC0)
    record = decode(encode_frame(0x12, payload))
    assert record.lbs is None
    assert record.gps.satellites == 9
    assert record.gps.latitude is None
    assert not record.has_location
    assert record.additional_data == '026B3F3E0C395DC0'


def test_trailing_bytes_kept_as_additional_data(decode, gps_lbs_payload):
    record = decode(encode_frame(0x22, gps_lbs_payload() + b'\x01\x02'))
    assert record.protocol_name == 'LOCATION_REQUEST'
    assert record.additional_data == '0102'


def test_gps_lbs_extend_tail(decode, gps_lbs_payload):
    payload = gps_lbs_payload() + b'\x00\x00\x00\x00' + b'\xAB\xCD'
    record = decode(encode_frame(0x19, payload, serial_number=9))
    assert record.needs_response
    assert record.has_location
    assert record.extended_data == 'ABCD'


def test_status_info(decode):
    record = decode(encode_frame(0x13, bytes([0x05]) + struct.pack('>HBH', 410, 4, 2)))
    status = record.status
    assert status.oil_electricity
    assert not status.gps_tracking
    assert status.charging
    assert not status.acc_high
    assert not status.defence
    assert not status.low_battery
    assert status.gsm_signal == 0
    assert status.voltage == pytest.approx(4.10)
    assert status.gsm_signal_strength == 4
    assert status.alarm_language == 2
    assert not record.needs_response


def test_status_single_byte(decode):
    record = decode(encode_frame(0x13, bytes([0xC8])))
    assert record.status.acc_high
    assert record.status.gsm_signal == 3
    assert record.status.voltage is None


def test_alarm(decode, alarm_frame):
    record = decode(alarm_frame)
    assert record.protocol_name == 'ALARM_DATA'
    assert record.needs_response
    assert record.alarm.emergency
    assert not any([
        record.alarm.overspeed, record.alarm.low_power, record.alarm.shock,
        record.alarm.into_area, record.alarm.out_area,
        record.alarm.long_no_operation, record.alarm.distance,
    ])
    assert record.has_location
    assert record.lbs.mcc == 460


def test_wifi(decode, wifi_frame):
    record = decode(wifi_frame)
    wifi = record.wifi
    assert wifi.wifi_time == datetime(2024, 10, 17, 12, 31, 0, tzinfo=timezone.utc)
    assert wifi.wifi_count == 2
    assert [(ap.mac, ap.rssi) for ap in wifi.access_points] == [
        ('A0B1C2D3E4F5', 0x45),
        ('112233445566', 0x50),
    ]


def test_wifi_truncated(decode):
    payload = bytes([24, 10, 17, 12, 31, 0, 3]) + bytes.fromhex('A0B1C2D3E4F5') + bytes([0x45])
    record = decode(encode_frame(0x30, payload))
    assert record.wifi.wifi_count == 3
    assert len(record.wifi.access_points) == 1


def test_iccid(decode):
    record = decode(encode_frame(0x69, bytes.fromhex('98107120000000000010')))
    assert record.iccid == '89011702000000000001'


def test_gps_lbs_4g(decode):
    payload = bytes([24, 10, 17, 12, 30, 0, 0x00])
    payload += struct.pack('>IIBH', 0x026B3F3E, 0x0C395DC0, 12, 0x1400 | 90)
    payload += struct.pack('>HH', 0x8000 | 460, 1)
    payload += struct.pack('>I', 0x1234) + struct.pack('>Q', 0xABCDEF)
    record = decode(encode_frame(0xA0, payload))
    assert record.protocol_name == 'GPS_LBS_STATUS_A0'
    assert record.gps.latitude == pytest.approx(22.546097)
    assert record.gps.satellites == 0
    assert record.lbs.mcc == 460
    assert record.lbs.mnc == 1
    assert record.lbs.lac == 0x1234
    assert record.lbs.cell_id == 0xABCDEF


def test_gps_lbs_4g_single_byte_mnc(decode):
    payload = bytes([24, 10, 17, 12, 30, 0, 0xC5])
    payload += struct.pack('>IIBH', 0x026B3F3E, 0x0C395DC0, 0, 0x1400)
    payload += struct.pack('>HB', 460, 7) + struct.pack('>I', 0x10) + struct.pack('>Q', 0x20)
    record = decode(encode_frame(0xA0, payload))
    assert record.lbs.mnc == 7
    assert record.lbs.lac == 0x10
    assert record.lbs.cell_id == 0x20


def test_status_command(decode):
    record = decode(encode_frame(0x8A, b'\x02\x10\x20'))
    assert record.command_type == 0x02
    assert record.command_data == '1020'


def test_information_text(decode):
    record = decode(encode_extended_frame(0x94, b'HELLO'))
    assert record.is_extended
    assert record.text == 'HELLO'
    assert record.serial_number == 0
    assert record.checksum == 0
    assert record.data is None


def test_information_binary(decode):
    record = decode(encode_extended_frame(0x94, b'\x00\x01\xFF'))
    assert record.text is None
    assert record.data == '0001FF'


def test_extended_command(decode):
    record = decode(encode_extended_frame(0x98, b'IMEI:1'))
    assert record.command_data == '494D45493A31'
    assert record.text == 'IMEI:1'


def test_unknown_protocol(decode):
    record = decode(encode_frame(0xFF, b'\xDE\xAD'))
    assert record.protocol_name == 'UNKNOWN'
    assert record.data == 'DEAD'
    assert not record.needs_response
    assert decode.handler.create_response(record) is None


def test_heartbeat_without_decoder_keeps_hex(decode):
    record = decode(encode_frame(0x23, b'\x01\x02\x03'))
    assert record.protocol_name == PROTOCOL_NAMES[0x23]
    assert record.data == '010203'


def test_records_are_frozen(decode, login_frame):
    record = decode(login_frame)
    with pytest.raises(ValidationError):
        record.terminal_id = 'other'


def test_can_handle(login_frame):
    handler = GT06ProtocolHandler()
    assert handler.can_handle(login_frame)
    assert handler.can_handle(encode_extended_frame(0x94))
    assert not handler.can_handle(b'[3G*1234*0002*LK]')


def test_message_count(login_frame, gps_frame):
    from tcp_server.protocols import FrameReassembler
    handler = GT06ProtocolHandler()
    for frame in FrameReassembler().feed(login_frame + gps_frame):
        handler.parse_message(frame)
    assert handler.message_count == 2
    assert handler.last_message_time is not None


def test_format_parsed_data(decode, gps_frame):
    text = decode.handler.format_parsed_data(decode(gps_frame))
    assert 'GPS_LBS_STATUS_2' in text
    assert 'Location: 22.546097, 113.936747' in text
