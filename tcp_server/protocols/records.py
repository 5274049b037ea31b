"""
Decoded GT06 records
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RecordModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class GpsFix(RecordModel):
    gps_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[int] = None  # km/h
    course: Optional[int] = None  # degrees
    satellites: Optional[int] = None
    gps_real_time: Optional[bool] = None
    gps_positioned: Optional[bool] = None
    east_longitude: Optional[bool] = None
    north_latitude: Optional[bool] = None


class CellTower(RecordModel):
    mcc: int
    mnc: int
    lac: int
    cell_id: int


class TerminalStatus(RecordModel):
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


class AlarmFlags(RecordModel):
    emergency: bool
    overspeed: bool
    low_power: bool
    shock: bool
    into_area: bool
    out_area: bool
    long_no_operation: bool
    distance: bool


class AccessPoint(RecordModel):
    mac: str
    rssi: int


class WifiScan(RecordModel):
    wifi_time: Optional[datetime] = None
    wifi_count: int = 0
    access_points: List[AccessPoint] = Field(default_factory=list)


class DecodedRecord(RecordModel):
    """Everything decoded from one frame"""
    raw: str
    timestamp: datetime
    length: int
    protocol: int
    protocol_name: str
    serial_number: int = 0
    checksum: int = 0
    needs_response: bool = False
    is_extended: bool = False

    # Login
    terminal_id: Optional[str] = None
    device_type: Optional[int] = None
    timezone_offset: Optional[int] = None

    gps: Optional[GpsFix] = None
    lbs: Optional[CellTower] = None
    status: Optional[TerminalStatus] = None
    alarm: Optional[AlarmFlags] = None
    wifi: Optional[WifiScan] = None
    iccid: Optional[str] = None

    # Commands and free text
    command_type: Optional[int] = None
    command_data: Optional[str] = None
    text: Optional[str] = None

    # Opaque hex
    additional_data: Optional[str] = None
    extended_data: Optional[str] = None
    data: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.gps is not None and self.gps.latitude is not None and self.gps.longitude is not None
