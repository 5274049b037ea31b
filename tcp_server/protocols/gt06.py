"""
GT06 Protocol Handler
Decodes GT06 / Concox family tracker frames (0x7878 standard and 0x7979 extended)
and builds the acknowledgement frames the devices expect.
"""
import struct
import logging
from typing import Dict, Any, NamedTuple, Optional
from datetime import datetime, timezone
from .base import BaseProtocolHandler
from .crc import crc16
from .framing import Frame, START_STANDARD, START_EXTENDED, STOP_BITS
from .records import (
    AccessPoint, AlarmFlags, CellTower, DecodedRecord, GpsFix, TerminalStatus, WifiScan,
)

logger = logging.getLogger(__name__)


PROTOCOL_NAMES = {
    0x01: 'LOGIN',
    0x02: 'GPS_POSITIONING',
    0x03: 'HEARTBEAT',
    0x04: 'TERMINAL_RESPONSE',
    0x05: 'TERMINAL_COMMAND',
    0x08: 'REQUEST_RESPONSE',
    0x10: 'GPS_LBS_STATUS',
    0x11: 'GPS_LBS_ALARM',
    0x12: 'GPS_LBS_STATUS_2',
    0x13: 'STATUS_INFO',
    0x15: 'STRING_INFO',
    0x16: 'ALARM_DATA',
    0x17: 'GPS_LBS_MULTIPLE',
    0x18: 'LBS_PHONE',
    0x19: 'GPS_LBS_EXTEND',
    0x1A: 'GPS_LBS_DATA',
    0x21: 'ONLINE_COMMAND',
    0x22: 'LOCATION_REQUEST',
    0x23: 'LOCATION_DATA',
    0x26: 'ALARM_DATA_26',
    0x27: 'TIME_REQUEST',
    0x28: 'INFO_TRANSMISSION',
    0x2A: 'PHOTO_DATA',
    0x30: 'WIFI_POSITIONING',
    0x31: 'MANUAL_POSITIONING',
    0x32: 'AUTOMATIC_POSITIONING',
    0x33: 'AGPS_REQUEST',
    0x34: 'AGPS_COMMAND',
    0x40: 'PERIPHERAL_SYSTEMS',
    0x41: 'FORWARD_MESSAGE',
    0x42: 'FORWARD_QUESTION',
    0x43: 'FORWARD_MONITOR',
    0x44: 'FORWARD_COMMAND',
    0x57: 'WIFI_OFFLINE',
    0x58: 'GPS_DRIVER_BEHAVIOR',
    0x69: 'ICCID_INFO',
    0x70: 'LOCATION_REPORTING',
    0x80: 'COMMAND_0X80',
    0x81: 'COMMAND_0X81',
    0x82: 'COMMAND_0X82',
    0x8A: 'GPS_LBS_STATUS_8A',
    0x90: 'COMMAND_0X90',
    0x91: 'COMMAND_0X91',
    0x92: 'COMMAND_0X92',
    0x93: 'COMMAND_0X93',
    0x94: 'INFORMATION_TRANSMISSION',
    0x95: 'COMMAND_0X95',
    0x98: 'COMMAND_0X98',
    0x99: 'COMMAND_0X99',
    0xA0: 'GPS_LBS_STATUS_A0',
}
UNKNOWN_PROTOCOL = 'UNKNOWN'

# Protocol numbers the terminal expects a reply for
ACK_REQUIRED = frozenset({0x01, 0x15, 0x16, 0x18, 0x19, 0x21})

MSG_LOGIN = 0x01
MSG_STATUS_INFO = 0x13
MSG_ALARM = 0x16
MSG_GPS_LBS_EXTEND = 0x19
MSG_WIFI = 0x30
MSG_ICCID = 0x69
MSG_STATUS_COMMAND = 0x8A
MSG_INFORMATION = 0x94
MSG_GPS_LBS_4G = 0xA0

GPS_LBS_PROTOCOLS = frozenset({0x10, 0x11, 0x12, 0x1A, 0x22, 0x70})
EXTENDED_COMMANDS = frozenset({0x98, 0x99})

ACK_LENGTH = 0x05
COORDINATE_DIVISOR = 60.0 * 30000.0
EXTEND_TAIL_OFFSET = 30

# Course/status word
COURSE_MASK = 0x03FF
NORTH_LATITUDE_BIT = 0x0400
WEST_LONGITUDE_BIT = 0x0800
POSITIONED_BIT = 0x1000
DIFFERENTIAL_BIT = 0x2000


class GpsLbsLayout(NamedTuple):
    """Offset rules for one GPS/LBS payload family"""
    gated_coordinates: bool  # Zero GPS info byte means no coordinate bytes
    flagged_mnc: bool  # MCC top bit selects a 2-byte MNC
    lac_size: int
    cell_id_size: int


STANDARD_LAYOUT = GpsLbsLayout(gated_coordinates=True, flagged_mnc=False, lac_size=2, cell_id_size=3)
LAYOUT_4G = GpsLbsLayout(gated_coordinates=False, flagged_mnc=True, lac_size=4, cell_id_size=8)


def build_ack(serial_number: int, protocol: int) -> bytes:
    """Ten byte acknowledgement frame for the given serial and protocol number"""
    body = struct.pack('>BBH', ACK_LENGTH, protocol & 0xFF, serial_number & 0xFFFF)
    return START_STANDARD + body + struct.pack('>H', crc16(body)) + STOP_BITS


def to_hex(data: bytes) -> str:
    return data.hex().upper()


def printable_text(data: bytes) -> Optional[str]:
    """Payload as text if every byte is printable ASCII"""
    if data and all(0x20 <= byte <= 0x7E for byte in data):
        return data.decode('ascii')
    return None


class GT06ProtocolHandler(BaseProtocolHandler):
    """
    GT06 protocol decoder, one instance per connection.
    Never raises on malformed payloads: fields that cannot be read stay unset.
    """

    def get_protocol_name(self) -> str:
        return "GT06"

    def can_handle(self, data: bytes) -> bool:
        """Check for either GT06 start marker"""
        return data[:2] in (START_STANDARD, START_EXTENDED)

    def parse_message(self, frame: Frame) -> DecodedRecord:
        """Decode a complete frame into a record"""
        protocol = frame.protocol
        body = frame.payload

        result: Dict[str, Any] = {
            'raw': to_hex(frame.raw),
            'timestamp': datetime.now(timezone.utc),
            'length': frame.length,
            'protocol': protocol,
            'protocol_name': PROTOCOL_NAMES.get(protocol, UNKNOWN_PROTOCOL),
            'serial_number': frame.serial_number,
            'checksum': frame.checksum,
            'needs_response': protocol in ACK_REQUIRED,
            'is_extended': frame.extended,
        }

        try:
            if protocol == MSG_LOGIN:
                self._parse_login(body, result)
            elif protocol in GPS_LBS_PROTOCOLS:
                self._parse_gps_lbs(body, result)
            elif protocol == MSG_GPS_LBS_4G:
                self._parse_gps_lbs(body, result, LAYOUT_4G)
            elif protocol == MSG_GPS_LBS_EXTEND:
                self._parse_gps_lbs(body, result)
                if len(body) > EXTEND_TAIL_OFFSET:
                    result['extended_data'] = to_hex(body[EXTEND_TAIL_OFFSET:])
            elif protocol == MSG_STATUS_INFO:
                self._parse_status(body, result)
            elif protocol == MSG_ALARM:
                self._parse_alarm(body, result)
            elif protocol == MSG_WIFI:
                self._parse_wifi(body, result)
            elif protocol == MSG_ICCID:
                self._parse_iccid(body, result)
            elif protocol == MSG_STATUS_COMMAND:
                self._parse_status_command(body, result)
            elif protocol == MSG_INFORMATION:
                self._parse_information(body, result)
            elif protocol in EXTENDED_COMMANDS:
                self._parse_extended_command(body, result)
            else:
                result['data'] = to_hex(body)
        except (struct.error, ValueError, IndexError) as e:
            logger.warning(f"Partial decode of {result['protocol_name']} frame {result['raw']}: {e}")

        record = DecodedRecord(**result)
        self.mark_received()
        if record.terminal_id:
            self.device_id = record.terminal_id
        if record.has_location and not self.validate_coordinates(record.gps.latitude, record.gps.longitude):
            logger.warning(f"Coordinates out of range from {self.device_id}: {record.gps.latitude}, {record.gps.longitude}")
        return record

    def _parse_datetime(self, body: bytes, offset: int = 0) -> Optional[datetime]:
        """Six bytes: year since 2000, month, day, hour, minute, second (UTC)"""
        if len(body) < offset + 6:
            return None
        year, month, day, hour, minute, second = body[offset:offset + 6]
        try:
            return datetime(2000 + year, month, day, hour, minute, second, tzinfo=timezone.utc)
        except ValueError:
            logger.debug(f"Invalid date/time bytes: {to_hex(body[offset:offset + 6])}")
            return None

    def _parse_login(self, body: bytes, result: dict):
        """Parse login message (0x01)"""
        if len(body) < 8:
            return
        result['terminal_id'] = to_hex(body[0:8])
        if len(body) >= 10:
            result['device_type'] = struct.unpack('>H', body[8:10])[0]
        if len(body) >= 12:
            result['timezone_offset'] = struct.unpack('>h', body[10:12])[0]

    def _parse_gps_lbs(self, body: bytes, result: dict, layout: GpsLbsLayout = STANDARD_LAYOUT):
        """Parse date/time, GPS block and LBS block shared by the positioning messages"""
        if len(body) < 6:
            if body:
                result['additional_data'] = to_hex(body)
            return

        gps: Dict[str, Any] = {'gps_time': self._parse_datetime(body)}
        offset = 6

        if offset < len(body):
            gps_info = body[offset]
            offset += 1
            gps['satellites'] = gps_info & 0x0F

            has_coordinates = gps_info != 0 or not layout.gated_coordinates
            if has_coordinates and offset + 11 > len(body):
                # Truncated GPS block: nothing after it can be placed
                result['gps'] = GpsFix(**gps)
                if offset < len(body):
                    result['additional_data'] = to_hex(body[offset:])
                return
            if has_coordinates:
                lat_raw, lon_raw, speed, course_status = struct.unpack('>IIBH', body[offset:offset + 11])
                gps.update(self._decode_position(lat_raw, lon_raw, speed, course_status))
                offset += 11

        result['gps'] = GpsFix(**gps)

        lbs_size = 2 + 1 + layout.lac_size + layout.cell_id_size
        if offset + lbs_size <= len(body):
            mcc = struct.unpack('>H', body[offset:offset + 2])[0]
            offset += 2
            mnc_size = 1
            if layout.flagged_mnc and mcc & 0x8000:
                mcc &= 0x7FFF
                mnc_size = 2
            if offset + mnc_size + layout.lac_size + layout.cell_id_size <= len(body):
                mnc = int.from_bytes(body[offset:offset + mnc_size], 'big')
                offset += mnc_size
                lac = int.from_bytes(body[offset:offset + layout.lac_size], 'big')
                offset += layout.lac_size
                cell_id = int.from_bytes(body[offset:offset + layout.cell_id_size], 'big')
                offset += layout.cell_id_size
                result['lbs'] = CellTower(mcc=mcc, mnc=mnc, lac=lac, cell_id=cell_id)
            else:
                offset -= 2

        if offset < len(body):
            result['additional_data'] = to_hex(body[offset:])

    def _decode_position(self, lat_raw: int, lon_raw: int, speed: int, course_status: int) -> Dict[str, Any]:
        """Scale coordinates and apply the hemisphere bits of the course/status word"""
        north = bool(course_status & NORTH_LATITUDE_BIT)
        east = not course_status & WEST_LONGITUDE_BIT

        latitude = round(lat_raw / COORDINATE_DIVISOR, 6)
        longitude = round(lon_raw / COORDINATE_DIVISOR, 6)
        if not north:
            latitude = -latitude
        if not east:
            longitude = -longitude

        return {
            'latitude': latitude,
            'longitude': longitude,
            'speed': speed,
            'course': course_status & COURSE_MASK,
            'gps_real_time': not course_status & DIFFERENTIAL_BIT,
            'gps_positioned': bool(course_status & POSITIONED_BIT),
            'east_longitude': east,
            'north_latitude': north,
        }

    def _parse_status(self, body: bytes, result: dict):
        """Parse status information (0x13)"""
        if not body:
            return
        status = body[0]
        info: Dict[str, Any] = {
            'oil_electricity': bool(status & 0x01),
            'gps_tracking': bool(status & 0x02),
            'charging': bool(status & 0x04),
            'acc_high': bool(status & 0x08),
            'defence': bool(status & 0x10),
            'low_battery': bool(status & 0x20),
            'gsm_signal': (status >> 6) & 0x03,
        }
        if len(body) >= 3:
            info['voltage'] = struct.unpack('>H', body[1:3])[0] / 100
        if len(body) >= 4:
            info['gsm_signal_strength'] = body[3]
        if len(body) >= 6:
            info['alarm_language'] = struct.unpack('>H', body[4:6])[0]
        result['status'] = TerminalStatus(**info)

    def _parse_alarm(self, body: bytes, result: dict):
        """Parse alarm message (0x16): alarm byte followed by GPS/LBS data"""
        if not body:
            return
        alarm = body[0]
        result['alarm'] = AlarmFlags(
            emergency=bool(alarm & 0x01),
            overspeed=bool(alarm & 0x02),
            low_power=bool(alarm & 0x04),
            shock=bool(alarm & 0x08),
            into_area=bool(alarm & 0x10),
            out_area=bool(alarm & 0x20),
            long_no_operation=bool(alarm & 0x40),
            distance=bool(alarm & 0x80),
        )
        if len(body) > 1:
            self._parse_gps_lbs(body[1:], result)

    def _parse_wifi(self, body: bytes, result: dict):
        """Parse Wi-Fi positioning (0x30)"""
        if len(body) < 6:
            return
        scan: Dict[str, Any] = {'wifi_time': self._parse_datetime(body)}
        offset = 6
        if offset < len(body):
            count = body[offset]
            offset += 1
            access_points = []
            while len(access_points) < count and offset + 7 <= len(body):
                access_points.append(AccessPoint(mac=to_hex(body[offset:offset + 6]), rssi=body[offset + 6]))
                offset += 7
            if len(access_points) < count:
                logger.debug(f"Wi-Fi scan announced {count} access points, payload holds {len(access_points)}")
            scan['wifi_count'] = count
            scan['access_points'] = access_points
        result['wifi'] = WifiScan(**scan)

    def _parse_iccid(self, body: bytes, result: dict):
        """Parse ICCID (0x69): 10 bytes BCD, low nibble first"""
        if len(body) < 10:
            return
        result['iccid'] = ''.join(f"{byte & 0x0F}{byte >> 4}" for byte in body[:10])

    def _parse_status_command(self, body: bytes, result: dict):
        """Parse status command (0x8A)"""
        if not body:
            return
        result['command_type'] = body[0]
        result['command_data'] = to_hex(body[1:])

    def _parse_information(self, body: bytes, result: dict):
        """Parse information transmission (0x94)"""
        if not body:
            return
        text = printable_text(body)
        if text is not None:
            result['text'] = text
        else:
            result['data'] = to_hex(body)

    def _parse_extended_command(self, body: bytes, result: dict):
        """Parse extended commands (0x98, 0x99)"""
        if not body:
            return
        result['command_data'] = to_hex(body)
        result['text'] = printable_text(body)

    def create_response(self, record: DecodedRecord) -> Optional[bytes]:
        """Acknowledgement frame for records that need one"""
        if not record.needs_response:
            return None
        return build_ack(record.serial_number, record.protocol)

    def format_parsed_data(self, record: DecodedRecord) -> str:
        """Format a decoded record for display"""
        lines = []
        lines.append(f"Protocol: {record.protocol_name} (0x{record.protocol:02X})")
        lines.append(f"Device ID: {record.terminal_id or self.device_id or 'Unknown'}")
        lines.append(f"Serial: {record.serial_number}")

        if record.has_location:
            lines.append(f"Location: {record.gps.latitude:.6f}, {record.gps.longitude:.6f}")
            lines.append(f"Speed: {record.gps.speed} km/h")
            lines.append(f"Course: {record.gps.course}°")
            lines.append(f"Satellites: {record.gps.satellites}")
            lines.append(f"GPS Time: {record.gps.gps_time.isoformat() if record.gps.gps_time else 'N/A'}")
            lines.append(f"GPS Positioned: {record.gps.gps_positioned}")
        if record.lbs:
            lines.append(f"Cell: MCC {record.lbs.mcc} MNC {record.lbs.mnc} LAC {record.lbs.lac} CID {record.lbs.cell_id}")
        if record.status:
            lines.append(f"Voltage: {record.status.voltage} V, GSM: {record.status.gsm_signal}")
        if record.alarm:
            active = [name for name, value in record.alarm.model_dump().items() if value]
            lines.append(f"Alarm: {', '.join(active) or 'none'}")
        if record.wifi:
            lines.append(f"Wi-Fi access points: {len(record.wifi.access_points)}")
        if record.iccid:
            lines.append(f"ICCID: {record.iccid}")

        return '\n'.join(lines)
