"""
Base protocol handler for GPS trackers
"""
from abc import ABC, abstractmethod
from typing import Optional
from datetime import datetime, timezone
import logging

from .framing import Frame
from .records import DecodedRecord

logger = logging.getLogger(__name__)


class BaseProtocolHandler(ABC):
    """Base class for binary GPS tracker protocol handlers"""

    def __init__(self, device_id: str = None):
        self.device_id = device_id
        self.last_message_time = None
        self.message_count = 0

    @abstractmethod
    def parse_message(self, frame: Frame) -> DecodedRecord:
        """Decode one complete frame from the device"""
        pass

    @abstractmethod
    def create_response(self, record: DecodedRecord) -> Optional[bytes]:
        """Reply frame for a decoded record, or None if no reply is due"""
        pass

    @abstractmethod
    def get_protocol_name(self) -> str:
        """Get the name of this protocol"""
        pass

    @abstractmethod
    def can_handle(self, data: bytes) -> bool:
        """Check if this handler can process the given bytes"""
        pass

    def validate_coordinates(self, lat: float, lon: float) -> bool:
        """Validate GPS coordinates"""
        return -90 <= lat <= 90 and -180 <= lon <= 180

    def mark_received(self):
        """Book-keeping for every decoded message"""
        self.message_count += 1
        self.last_message_time = datetime.now(timezone.utc)
