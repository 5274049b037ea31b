from sqlalchemy import Column, String, Float, DateTime, MetaData, BigInteger, Index, Integer, ForeignKey, Boolean, Text
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
metadata = MetaData()
Base = declarative_base(metadata=metadata)


def utcnow():
    return datetime.now(timezone.utc)


class Packet(Base):
    __tablename__ = 'packets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    raw = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    length = Column(Integer)
    protocol = Column(Integer)
    protocol_name = Column(String)
    serial_number = Column(Integer)
    checksum = Column(Integer)
    needs_response = Column(Boolean, default=False)
    is_extended = Column(Boolean, default=False)
    terminal_id = Column(String, nullable=True)
    device_type = Column(Integer, nullable=True)
    timezone_offset = Column(Integer, nullable=True)
    iccid = Column(String, nullable=True)
    command_type = Column(Integer, nullable=True)
    command_data = Column(Text, nullable=True)
    text = Column(Text, nullable=True)
    additional_data = Column(Text, nullable=True)
    extended_data = Column(Text, nullable=True)
    data = Column(Text, nullable=True)
    client_ip = Column(String, nullable=True)
    client_port = Column(Integer, nullable=True)

    gps = relationship("GpsData", back_populates="packet", uselist=False, cascade="all, delete-orphan")
    lbs = relationship("LbsData", back_populates="packet", uselist=False, cascade="all, delete-orphan")
    status = relationship("StatusInfo", back_populates="packet", uselist=False, cascade="all, delete-orphan")
    alarm = relationship("AlarmData", back_populates="packet", uselist=False, cascade="all, delete-orphan")
    wifi = relationship("WifiData", back_populates="packet", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_packets_timestamp', 'timestamp'),
        Index('idx_packets_terminal_id', 'terminal_id'),
        Index('idx_packets_protocol', 'protocol'),
    )

    def __repr__(self):
        return f"<Packet(id={self.id}, protocol={self.protocol_name}, terminal_id={self.terminal_id})>"


class GpsData(Base):
    __tablename__ = 'gps_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    packet_id = Column(Integer, ForeignKey('packets.id', ondelete='CASCADE'), nullable=False)
    gps_time = Column(DateTime(timezone=True), nullable=True)
    latitude = Column(Float(precision=53), nullable=True)
    longitude = Column(Float(precision=53), nullable=True)
    speed = Column(Integer, nullable=True)
    course = Column(Integer, nullable=True)
    satellites = Column(Integer, nullable=True)
    gps_real_time = Column(Boolean, nullable=True)
    gps_positioned = Column(Boolean, nullable=True)
    east_longitude = Column(Boolean, nullable=True)
    north_latitude = Column(Boolean, nullable=True)

    packet = relationship("Packet", back_populates="gps")

    __table_args__ = (
        Index('idx_gps_time', 'gps_time'),
        Index('idx_gps_packet', 'packet_id'),
    )


class LbsData(Base):
    __tablename__ = 'lbs_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    packet_id = Column(Integer, ForeignKey('packets.id', ondelete='CASCADE'), nullable=False)
    mcc = Column(Integer)
    mnc = Column(Integer)
    lac = Column(BigInteger)
    cell_id = Column(BigInteger)

    packet = relationship("Packet", back_populates="lbs")


class StatusInfo(Base):
    __tablename__ = 'status_info'

    id = Column(Integer, primary_key=True, autoincrement=True)
    packet_id = Column(Integer, ForeignKey('packets.id', ondelete='CASCADE'), nullable=False)
    oil_electricity = Column(Boolean)
    gps_tracking = Column(Boolean)
    charging = Column(Boolean)
    acc_high = Column(Boolean)
    defence = Column(Boolean)
    low_battery = Column(Boolean)
    gsm_signal = Column(Integer)
    voltage = Column(Float, nullable=True)
    gsm_signal_strength = Column(Integer, nullable=True)
    alarm_language = Column(Integer, nullable=True)

    packet = relationship("Packet", back_populates="status")


class AlarmData(Base):
    __tablename__ = 'alarm_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    packet_id = Column(Integer, ForeignKey('packets.id', ondelete='CASCADE'), nullable=False)
    emergency = Column(Boolean)
    overspeed = Column(Boolean)
    low_power = Column(Boolean)
    shock = Column(Boolean)
    into_area = Column(Boolean)
    out_area = Column(Boolean)
    long_no_operation = Column(Boolean)
    distance = Column(Boolean)

    packet = relationship("Packet", back_populates="alarm")


class WifiData(Base):
    __tablename__ = 'wifi_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    packet_id = Column(Integer, ForeignKey('packets.id', ondelete='CASCADE'), nullable=False)
    wifi_time = Column(DateTime(timezone=True), nullable=True)
    wifi_count = Column(Integer, default=0)

    packet = relationship("Packet", back_populates="wifi")
    access_points = relationship("WifiAccessPoint", back_populates="wifi_data",
                                 cascade="all, delete-orphan", order_by="WifiAccessPoint.id")


class WifiAccessPoint(Base):
    __tablename__ = 'wifi_access_points'

    id = Column(Integer, primary_key=True, autoincrement=True)
    wifi_data_id = Column(Integer, ForeignKey('wifi_data.id', ondelete='CASCADE'), nullable=False)
    mac_address = Column(String)
    rssi = Column(Integer)

    wifi_data = relationship("WifiData", back_populates="access_points")


class DeviceSession(Base):
    __tablename__ = 'device_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    terminal_id = Column(String, nullable=False)
    session_start = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    session_end = Column(DateTime(timezone=True), nullable=True)
    client_ip = Column(String, nullable=True)
    client_port = Column(Integer, nullable=True)
    last_heartbeat = Column(DateTime(timezone=True), nullable=True)
    total_packets = Column(Integer, default=0)
    status = Column(String, default='active')  # 'active' or 'closed'

    __table_args__ = (
        Index('idx_sessions_terminal_id', 'terminal_id'),
        Index('idx_sessions_status', 'status'),
    )

    def __repr__(self):
        return f"<DeviceSession(terminal_id={self.terminal_id}, status={self.status})>"
