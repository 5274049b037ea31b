"""
Packet store
Persists decoded GT06 records and answers the query API.
"""
import logging
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional
from sqlalchemy import func, distinct, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker
from database.db_conf import SessionLocal
from database.models import (
    Packet, GpsData, LbsData, StatusInfo, AlarmData, WifiData, WifiAccessPoint, DeviceSession,
)
from database.schemas import (
    PacketSummary, PacketResponse, GpsPoint, DeviceSummary, DeviceStats,
    DeviceSessionResponse, ProtocolCount, AlarmEvent,
)
from tcp_server.protocols.records import DecodedRecord

logger = logging.getLogger(__name__)


class ConnectionInfo(NamedTuple):
    """Where a record came from"""
    ip: str
    port: int
    terminal_id: Optional[str] = None


def _utcnow():
    return datetime.now(timezone.utc)


class PacketStore:
    """SQLAlchemy backed record store; every call opens and closes its own session"""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def store(self, record: DecodedRecord, connection_info: ConnectionInfo) -> int:
        """Insert one record with its decoded sections, returns the packet id"""
        terminal_id = record.terminal_id or connection_info.terminal_id
        db = self.session_factory()
        try:
            packet = Packet(
                raw=record.raw,
                timestamp=record.timestamp,
                received_at=_utcnow(),
                length=record.length,
                protocol=record.protocol,
                protocol_name=record.protocol_name,
                serial_number=record.serial_number,
                checksum=record.checksum,
                needs_response=record.needs_response,
                is_extended=record.is_extended,
                terminal_id=terminal_id,
                device_type=record.device_type,
                timezone_offset=record.timezone_offset,
                iccid=record.iccid,
                command_type=record.command_type,
                command_data=record.command_data,
                text=record.text,
                additional_data=record.additional_data,
                extended_data=record.extended_data,
                data=record.data,
                client_ip=connection_info.ip,
                client_port=connection_info.port,
            )

            if record.gps is not None:
                packet.gps = GpsData(**record.gps.model_dump())
            if record.lbs is not None:
                packet.lbs = LbsData(**record.lbs.model_dump())
            if record.status is not None:
                packet.status = StatusInfo(**record.status.model_dump())
            if record.alarm is not None:
                packet.alarm = AlarmData(**record.alarm.model_dump())
            if record.wifi is not None:
                packet.wifi = WifiData(
                    wifi_time=record.wifi.wifi_time,
                    wifi_count=record.wifi.wifi_count,
                    access_points=[
                        WifiAccessPoint(mac_address=ap.mac, rssi=ap.rssi)
                        for ap in record.wifi.access_points
                    ],
                )

            db.add(packet)
            if terminal_id:
                self._touch_session(db, terminal_id, connection_info)
            db.commit()
            logger.debug(f"Stored {record.protocol_name} packet {packet.id} from {connection_info.ip}:{connection_info.port}")
            return packet.id
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _touch_session(self, db, terminal_id: str, connection_info: ConnectionInfo):
        """Open or refresh the active session row for a terminal"""
        now = _utcnow()
        session = db.query(DeviceSession).filter(
            DeviceSession.terminal_id == terminal_id,
            DeviceSession.status == 'active'
        ).first()

        if session is None:
            session = DeviceSession(
                terminal_id=terminal_id,
                session_start=now,
                client_ip=connection_info.ip,
                client_port=connection_info.port,
                last_heartbeat=now,
                total_packets=1,
                status='active',
            )
            db.add(session)
            logger.info(f"Device session opened for {terminal_id} from {connection_info.ip}")
        else:
            session.last_heartbeat = now
            session.total_packets = (session.total_packets or 0) + 1
            session.client_ip = connection_info.ip
            session.client_port = connection_info.port

    def ping(self):
        """Round trip to the database; raises SQLAlchemyError when it is unreachable"""
        db = self.session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    def end_device_session(self, terminal_id: str) -> int:
        """Close every active session of a terminal, returns how many were closed"""
        db = self.session_factory()
        try:
            closed = db.query(DeviceSession).filter(
                DeviceSession.terminal_id == terminal_id,
                DeviceSession.status == 'active'
            ).update({'status': 'closed', 'session_end': _utcnow()}, synchronize_session=False)
            db.commit()
            if closed:
                logger.info(f"Device session closed for {terminal_id}")
            return closed
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def get_packets(self, limit: int = 100, offset: int = 0, terminal_id: Optional[str] = None,
                    protocol_name: Optional[str] = None, start_date: Optional[datetime] = None,
                    end_date: Optional[datetime] = None) -> List[PacketSummary]:
        """Newest packets first"""
        db = self.session_factory()
        try:
            query = db.query(Packet)
            if terminal_id:
                query = query.filter(Packet.terminal_id == terminal_id)
            if protocol_name:
                query = query.filter(Packet.protocol_name == protocol_name.upper())
            if start_date:
                query = query.filter(Packet.timestamp >= start_date)
            if end_date:
                query = query.filter(Packet.timestamp <= end_date)

            packets = query.order_by(Packet.timestamp.desc(), Packet.id.desc()).offset(offset).limit(limit).all()
            return [PacketSummary.model_validate(packet) for packet in packets]
        finally:
            db.close()

    def get_packet(self, packet_id: int) -> Optional[PacketResponse]:
        db = self.session_factory()
        try:
            packet = db.query(Packet).options(
                selectinload(Packet.gps),
                selectinload(Packet.lbs),
                selectinload(Packet.status),
                selectinload(Packet.alarm),
                selectinload(Packet.wifi).selectinload(WifiData.access_points),
            ).filter(Packet.id == packet_id).first()
            if packet is None:
                return None
            return PacketResponse.model_validate(packet)
        finally:
            db.close()

    def get_gps_data(self, terminal_id: Optional[str] = None, limit: int = 1000,
                     start_date: Optional[datetime] = None,
                     end_date: Optional[datetime] = None) -> List[GpsPoint]:
        """Positioned fixes, newest first"""
        db = self.session_factory()
        try:
            query = db.query(Packet, GpsData).join(GpsData, GpsData.packet_id == Packet.id).filter(
                GpsData.latitude.isnot(None),
                GpsData.longitude.isnot(None)
            )
            if terminal_id:
                query = query.filter(Packet.terminal_id == terminal_id)
            if start_date:
                query = query.filter(Packet.timestamp >= start_date)
            if end_date:
                query = query.filter(Packet.timestamp <= end_date)

            rows = query.order_by(Packet.timestamp.desc(), Packet.id.desc()).limit(limit).all()
            return [
                GpsPoint(
                    packet_id=packet.id,
                    terminal_id=packet.terminal_id,
                    timestamp=packet.timestamp,
                    gps_time=gps.gps_time,
                    latitude=gps.latitude,
                    longitude=gps.longitude,
                    speed=gps.speed,
                    course=gps.course,
                    satellites=gps.satellites,
                    gps_positioned=gps.gps_positioned,
                )
                for packet, gps in rows
            ]
        finally:
            db.close()

    def get_devices(self) -> List[DeviceSummary]:
        db = self.session_factory()
        try:
            rows = db.query(
                Packet.terminal_id,
                func.count(Packet.id),
                func.min(Packet.timestamp),
                func.max(Packet.timestamp)
            ).filter(
                Packet.terminal_id.isnot(None)
            ).group_by(Packet.terminal_id).order_by(func.max(Packet.timestamp).desc()).all()

            return [
                DeviceSummary(terminal_id=terminal_id, packet_count=count, first_seen=first_seen, last_seen=last_seen)
                for terminal_id, count, first_seen, last_seen in rows
            ]
        finally:
            db.close()

    def get_device_stats(self, terminal_id: str) -> Optional[DeviceStats]:
        """Per-device totals, None when the terminal never reported"""
        db = self.session_factory()
        try:
            total, active_days, first_seen, last_seen = db.query(
                func.count(Packet.id),
                func.count(distinct(func.date(Packet.timestamp))),
                func.min(Packet.timestamp),
                func.max(Packet.timestamp)
            ).filter(Packet.terminal_id == terminal_id).one()

            if not total:
                return None

            gps_packets = db.query(func.count(GpsData.id)).join(Packet, GpsData.packet_id == Packet.id).filter(
                Packet.terminal_id == terminal_id,
                GpsData.latitude.isnot(None)
            ).scalar()
            alarm_packets = db.query(func.count(AlarmData.id)).join(Packet, AlarmData.packet_id == Packet.id).filter(
                Packet.terminal_id == terminal_id
            ).scalar()

            return DeviceStats(
                terminal_id=terminal_id,
                total_packets=total,
                active_days=active_days,
                gps_packets=gps_packets or 0,
                alarm_packets=alarm_packets or 0,
                first_seen=first_seen,
                last_seen=last_seen,
            )
        finally:
            db.close()

    def get_active_sessions(self) -> List[DeviceSessionResponse]:
        db = self.session_factory()
        try:
            sessions = db.query(DeviceSession).filter(
                DeviceSession.status == 'active'
            ).order_by(DeviceSession.last_heartbeat.desc()).all()
            return [DeviceSessionResponse.model_validate(session) for session in sessions]
        finally:
            db.close()

    def get_protocol_stats(self) -> List[ProtocolCount]:
        db = self.session_factory()
        try:
            rows = db.query(
                Packet.protocol,
                Packet.protocol_name,
                func.count(Packet.id).label('count')
            ).group_by(Packet.protocol, Packet.protocol_name).order_by(func.count(Packet.id).desc()).all()
            return [ProtocolCount(protocol=protocol, protocol_name=name, count=count) for protocol, name, count in rows]
        finally:
            db.close()

    def get_alarms(self, terminal_id: Optional[str] = None, limit: int = 100) -> List[AlarmEvent]:
        """Alarm packets with the position reported alongside, newest first"""
        db = self.session_factory()
        try:
            query = db.query(Packet, AlarmData, GpsData).join(
                AlarmData, AlarmData.packet_id == Packet.id
            ).outerjoin(GpsData, GpsData.packet_id == Packet.id)
            if terminal_id:
                query = query.filter(Packet.terminal_id == terminal_id)

            rows = query.order_by(Packet.timestamp.desc(), Packet.id.desc()).limit(limit).all()
            events = []
            for packet, alarm, gps in rows:
                flags = {name: getattr(alarm, name) for name in ALARM_FLAG_NAMES}
                events.append(AlarmEvent(
                    packet_id=packet.id,
                    terminal_id=packet.terminal_id,
                    timestamp=packet.timestamp,
                    active=[name for name, value in flags.items() if value],
                    latitude=gps.latitude if gps else None,
                    longitude=gps.longitude if gps else None,
                ))
            return events
        finally:
            db.close()


ALARM_FLAG_NAMES = (
    'emergency', 'overspeed', 'low_power', 'shock',
    'into_area', 'out_area', 'long_no_operation', 'distance',
)
