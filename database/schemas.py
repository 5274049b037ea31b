from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class GpsDataResponse(OrmModel):
    gps_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[int] = None
    course: Optional[int] = None
    satellites: Optional[int] = None
    gps_real_time: Optional[bool] = None
    gps_positioned: Optional[bool] = None
    east_longitude: Optional[bool] = None
    north_latitude: Optional[bool] = None


class LbsDataResponse(OrmModel):
    mcc: int
    mnc: int
    lac: int
    cell_id: int


class StatusInfoResponse(OrmModel):
    oil_electricity: bool
    gps_tracking: bool
    charging: bool
    acc_high: bool
    defence: bool
    low_battery: bool
    gsm_signal: int
    voltage: Optional[float] = None
    gsm_signal_strength: Optional[int] = None
    alarm_language: Optional[int] = None


class AlarmDataResponse(OrmModel):
    emergency: bool
    overspeed: bool
    low_power: bool
    shock: bool
    into_area: bool
    out_area: bool
    long_no_operation: bool
    distance: bool


class WifiAccessPointResponse(OrmModel):
    mac_address: str
    rssi: int


class WifiDataResponse(OrmModel):
    wifi_time: Optional[datetime] = None
    wifi_count: int = 0
    access_points: List[WifiAccessPointResponse] = []


class PacketSummary(OrmModel):
    """One row of the packet listing"""
    id: int
    timestamp: datetime
    protocol: int
    protocol_name: str
    serial_number: int
    terminal_id: Optional[str] = None
    client_ip: Optional[str] = None
    client_port: Optional[int] = None
    raw: str


class PacketResponse(PacketSummary):
    """A stored packet with every decoded section"""
    received_at: Optional[datetime] = None
    length: int
    checksum: int
    needs_response: bool
    is_extended: bool
    device_type: Optional[int] = None
    timezone_offset: Optional[int] = None
    iccid: Optional[str] = None
    command_type: Optional[int] = None
    command_data: Optional[str] = None
    text: Optional[str] = None
    additional_data: Optional[str] = None
    extended_data: Optional[str] = None
    data: Optional[str] = None
    gps: Optional[GpsDataResponse] = None
    lbs: Optional[LbsDataResponse] = None
    status: Optional[StatusInfoResponse] = None
    alarm: Optional[AlarmDataResponse] = None
    wifi: Optional[WifiDataResponse] = None


class GpsPoint(BaseModel):
    packet_id: int
    terminal_id: Optional[str] = None
    timestamp: datetime
    gps_time: Optional[datetime] = None
    latitude: float
    longitude: float
    speed: Optional[int] = None
    course: Optional[int] = None
    satellites: Optional[int] = None
    gps_positioned: Optional[bool] = None


class DeviceSummary(BaseModel):
    terminal_id: str
    packet_count: int
    first_seen: datetime
    last_seen: datetime


class DeviceStats(BaseModel):
    terminal_id: str
    total_packets: int
    active_days: int
    gps_packets: int
    alarm_packets: int
    first_seen: datetime
    last_seen: datetime


class DeviceSessionResponse(OrmModel):
    id: int
    terminal_id: str
    session_start: datetime
    session_end: Optional[datetime] = None
    client_ip: Optional[str] = None
    client_port: Optional[int] = None
    last_heartbeat: Optional[datetime] = None
    total_packets: int
    status: str


class ProtocolCount(BaseModel):
    protocol: int
    protocol_name: str
    count: int


class AlarmEvent(BaseModel):
    packet_id: int
    terminal_id: Optional[str] = None
    timestamp: datetime
    active: List[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
