#!/usr/bin/env python3
"""
GT06 Device Simulator
Logs in like a GT06 tracker, then sends a status frame and a GPS/LBS fix
every few seconds, printing the acknowledgements the server sends back.
"""
import asyncio
import logging
import math
import random
import struct
from datetime import datetime, timezone

from tcp_server.protocols import encode_frame, ACK_REQUIRED
from tcp_server.protocols.gt06 import (
    MSG_LOGIN, MSG_STATUS_INFO, MSG_ALARM, COORDINATE_DIVISOR,
    NORTH_LATITUDE_BIT, WEST_LONGITUDE_BIT, POSITIONED_BIT,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MSG_GPS_LBS = 0x12
ACK_SIZE = 10
ACK_TIMEOUT = 2.0


class GT06DeviceSimulator:
    """Simulates a GT06 tracker with a slowly wandering position"""

    def __init__(self, terminal_id: str = "0867010070001558", host: str = "localhost", port: int = 5023,
                 interval: float = 10.0):
        self.terminal_id = terminal_id
        self.host = host
        self.port = port
        self.interval = interval
        self.reader = None
        self.writer = None
        self.connected = False
        self.serial_number = 0

        # Starting position (Zurich area)
        self.lat = 47.3769 + random.uniform(-0.01, 0.01)
        self.lon = 8.5417 + random.uniform(-0.01, 0.01)
        self.speed = 0
        self.heading = random.uniform(0, 360)
        self.satellites = 8
        self.voltage = 4.10

        self.frames_sent = 0
        self.acks_received = 0

    async def connect(self):
        logger.info(f"Device {self.terminal_id}: Connecting to {self.host}:{self.port}...")
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        self.connected = True
        logger.info(f"Device {self.terminal_id}: Connected")

    async def disconnect(self):
        if self.writer:
            self.writer.close()
            await self.writer.wait_closed()
            self.connected = False
            logger.info(f"Device {self.terminal_id}: Disconnected")

    def next_serial(self) -> int:
        self.serial_number = (self.serial_number + 1) & 0xFFFF
        return self.serial_number

    async def send_frame(self, protocol: int, payload: bytes):
        """Send one frame; wait for the ack when the protocol expects one"""
        frame = encode_frame(protocol, payload, self.next_serial())
        self.writer.write(frame)
        await self.writer.drain()
        self.frames_sent += 1
        logger.debug(f"Device {self.terminal_id} TX: {frame.hex().upper()}")

        if protocol not in ACK_REQUIRED:
            return None
        try:
            ack = await asyncio.wait_for(self.reader.readexactly(ACK_SIZE), timeout=ACK_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Device {self.terminal_id}: No ack for protocol 0x{protocol:02X}")
            return None
        self.acks_received += 1
        logger.info(f"Device {self.terminal_id} RX ack: {ack.hex().upper()}")
        return ack

    def login_payload(self) -> bytes:
        # Terminal id BCD, device type, timezone/language word
        return bytes.fromhex(self.terminal_id) + struct.pack('>HH', 0x1001, 0x3200)

    def status_payload(self) -> bytes:
        status = 0x01 | 0x02 | 0x08 | (0x03 << 6)  # oil, tracking, ACC high, good signal
        return struct.pack('>BHBH', status, round(self.voltage * 100), 4, 0x0002)

    def gps_lbs_payload(self, now: datetime = None) -> bytes:
        now = now or datetime.now(timezone.utc)
        course_status = int(self.heading) & 0x03FF | POSITIONED_BIT
        if self.lat >= 0:
            course_status |= NORTH_LATITUDE_BIT
        if self.lon < 0:
            course_status |= WEST_LONGITUDE_BIT

        payload = bytes([now.year - 2000, now.month, now.day, now.hour, now.minute, now.second])
        payload += bytes([0xC0 | (self.satellites & 0x0F)])
        payload += struct.pack(
            '>IIBH',
            round(abs(self.lat) * COORDINATE_DIVISOR),
            round(abs(self.lon) * COORDINATE_DIVISOR),
            min(int(self.speed), 255),
            course_status
        )
        # MCC 228 (Switzerland), MNC 1, LAC, cell id
        payload += struct.pack('>HBH', 228, 1, 0x2B1C) + (0x00A3F1).to_bytes(3, 'big')
        return payload

    async def send_login(self):
        ack = await self.send_frame(MSG_LOGIN, self.login_payload())
        if ack:
            logger.info(f"Device {self.terminal_id}: Login acknowledged")
        return ack

    async def send_status(self):
        return await self.send_frame(MSG_STATUS_INFO, self.status_payload())

    async def send_location(self):
        self.update_position()
        await self.send_frame(MSG_GPS_LBS, self.gps_lbs_payload())
        logger.info(
            f"Device {self.terminal_id}: Sent location ({self.lat:.6f}, {self.lon:.6f}) "
            f"speed={self.speed}km/h heading={self.heading:.0f} sats={self.satellites}"
        )

    async def send_sos(self):
        """Alarm frame with the emergency bit set"""
        return await self.send_frame(MSG_ALARM, bytes([0x01]) + self.gps_lbs_payload())

    def update_position(self):
        """Drift the position the way a slowly moving vehicle would"""
        if random.random() < 0.2:
            self.speed = max(0, min(80, self.speed + random.randint(-10, 15)))
            self.heading = (self.heading + random.uniform(-20, 20)) % 360

        distance = (self.speed * 1000 / 3600) * self.interval
        self.lat += (distance * math.cos(math.radians(self.heading))) / 111111.0
        self.lon += (distance * math.sin(math.radians(self.heading))) / (111111.0 * math.cos(math.radians(self.lat)))
        self.satellites = max(4, min(12, self.satellites + random.randint(-1, 1)))
        self.voltage = max(3.5, self.voltage - random.uniform(0, 0.002))

    async def run(self, count: int = None, sos: bool = False):
        """Send fixes until count is reached (forever if None)"""
        sent = 0
        try:
            await self.connect()
            await self.send_login()
            await self.send_status()
            if sos:
                await self.send_sos()

            while self.connected and (count is None or sent < count):
                await self.send_location()
                sent += 1
                if sent % 6 == 0:
                    await self.send_status()
                await asyncio.sleep(self.interval)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.error(f"Device {self.terminal_id}: Connection lost - {e}")
        finally:
            await self.disconnect()
            logger.info(f"Device {self.terminal_id}: {self.frames_sent} frames sent, {self.acks_received} acks received")


async def main():
    import argparse

    parser = argparse.ArgumentParser(description='GT06 Device Simulator')
    parser.add_argument('--host', default='localhost', help='Server host')
    parser.add_argument('--port', type=int, default=5023, help='Server port')
    parser.add_argument('--terminal-id', default='0867010070001558', help='16 digit terminal id')
    parser.add_argument('--interval', type=float, default=10.0, help='Seconds between fixes')
    parser.add_argument('--count', type=int, help='Number of fixes to send')
    parser.add_argument('--sos', action='store_true', help='Send an emergency alarm after login')
    parser.add_argument('--verbose', action='store_true', help='Log every frame sent')

    args = parser.parse_args()
    if args.verbose:
        logger.setLevel(logging.DEBUG)

    simulator = GT06DeviceSimulator(args.terminal_id, args.host, args.port, args.interval)
    await simulator.run(args.count, args.sos)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nSimulator stopped")
