"""
GT06 Tracker TCP Server
Accepts tracker connections, reassembles and decodes GT06 frames,
acknowledges them and hands each record to the packet store.
"""
import asyncio
import logging
import signal
import socket
import sys
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Set

from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database.repository import ConnectionInfo, PacketStore
from logs.async_logging import AsyncLoggingManager
from tcp_server.protocols import FrameReassembler, GT06ProtocolHandler, DecodedRecord, Frame

logger = logging.getLogger(__name__)

LOCAL_ADDRESSES = ('127.0.0.1', 'localhost', '::1')
SHUTDOWN_DRAIN_TIMEOUT = 5  # Seconds to wait for storage queues on shutdown

# Session states
OPEN = 'open'
CLOSING = 'closing'
CLOSED = 'closed'


class ConnectionManager:
    """Manage connection limits and tracking"""

    def __init__(self, max_connections_per_ip: int = 50):
        self.max_connections_per_ip = max_connections_per_ip
        self.connections_by_ip = defaultdict(set)

    def can_connect(self, peername) -> bool:
        """Check if connection is allowed"""
        if not peername:
            return False

        ip = peername[0]
        if len(self.connections_by_ip[ip]) >= self.max_connections_per_ip:
            logger.warning(f"Connection limit exceeded for IP: {ip}")
            return False
        return True

    def add_connection(self, peername, conn_id):
        if peername:
            self.connections_by_ip[peername[0]].add(conn_id)

    def remove_connection(self, peername, conn_id):
        if peername:
            ip = peername[0]
            self.connections_by_ip[ip].discard(conn_id)
            if not self.connections_by_ip[ip]:
                del self.connections_by_ip[ip]


class GT06ClientProtocol(asyncio.Protocol):
    """
    One tracker connection. Owns its reassembler and decoder; frames are
    decoded and acknowledged in arrival order, records are stored in the
    same order by a per-connection writer task.
    """

    def __init__(self, server):
        self.server = server
        self.transport = None
        self.peername = None
        self.conn_id = None
        self.device_id = None
        self.state = OPEN
        self.reassembler = FrameReassembler(server.max_frame_length, server.checksum_policy)
        self.handler = GT06ProtocolHandler()
        self.last_activity = time.time()
        self.message_count = 0
        self.storage_queue: asyncio.Queue = asyncio.Queue()
        self.timeout_task = None
        self.writer_task = None

    @property
    def connection_info(self) -> ConnectionInfo:
        ip, port = (self.peername[0], self.peername[1]) if self.peername else ('unknown', 0)
        return ConnectionInfo(ip=ip, port=port, terminal_id=self.device_id)

    def connection_made(self, transport):
        """Handle new connection"""
        self.transport = transport
        self.peername = transport.get_extra_info('peername')
        self.conn_id = f"{self.peername}_{time.time()}"

        if not self.server.conn_manager.can_connect(self.peername):
            logger.warning(f"Connection rejected from {self.peername}")
            self.state = CLOSED
            transport.close()
            return

        if len(self.server.active_connections) >= self.server.max_connections:
            logger.warning(f"Max connections reached, rejecting {self.peername}")
            self.state = CLOSED
            transport.close()
            return

        self.server.conn_manager.add_connection(self.peername, self.conn_id)
        self.server.active_connections[self.conn_id] = self

        sock = transport.get_extra_info('socket')
        if sock is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        if self.peername and self.peername[0] not in LOCAL_ADDRESSES:
            logger.info(f"GPS tracker connected from {self.peername} (total: {len(self.server.active_connections)})")
        else:
            logger.debug(f"Local connection from {self.peername}")

        self.timeout_task = asyncio.create_task(self._monitor_timeout())
        if self.server.store is not None:
            self.writer_task = asyncio.create_task(self._storage_writer())
            self.server.track_writer(self.writer_task)

    def connection_lost(self, exc):
        """Move to CLOSING and let the writer drain"""
        if self.state == CLOSED:
            return

        if exc:
            logger.info(f"GPS tracker {self.device_id or self.peername} disconnected: {exc}")
        else:
            logger.info(f"GPS tracker {self.device_id or self.peername} disconnected")

        self.state = CLOSING
        if self.timeout_task:
            self.timeout_task.cancel()

        self.server.active_connections.pop(self.conn_id, None)
        self.server.conn_manager.remove_connection(self.peername, self.conn_id)

        if self.reassembler.pending:
            logger.debug(f"Discarding {self.reassembler.pending} buffered bytes from {self.peername}")
        self.reassembler.reset()

        if self.writer_task is not None:
            self.storage_queue.put_nowait(None)
        else:
            self.state = CLOSED

    def data_received(self, data):
        """Handle incoming bytes from a tracker"""
        if self.state != OPEN:
            return
        self.last_activity = time.time()

        try:
            for frame in self.reassembler.feed(data):
                self._handle_frame(frame)
        except Exception as e:
            logger.error(f"Error processing data from {self.peername}: {e}")
            self.server.stats['errors'] += 1
            self.close()
            return

        # Only bytes still waiting for a frame count against the ceiling
        if self.reassembler.pending > self.server.max_buffer_size:
            logger.warning(f"Buffer overflow from {self.peername} ({self.reassembler.pending} bytes pending), "
                           f"closing connection")
            self.close()

    def _handle_frame(self, frame: Frame):
        """Decode, acknowledge and queue one frame"""
        record = self.handler.parse_message(frame)
        self.message_count += 1
        self.server.stats['messages_received'] += 1
        if record.has_location:
            self.server.stats['valid_locations'] += 1
        if record.terminal_id:
            if self.device_id != record.terminal_id:
                logger.info(f"Login from terminal {record.terminal_id} at {self.peername}")
            self.device_id = record.terminal_id

        logger.debug(f"Received from {self.device_id or self.peername}:\n{self.handler.format_parsed_data(record)}")

        response = self.handler.create_response(record)
        if response is not None and self.transport and not self.transport.is_closing():
            self.transport.write(response)
            logger.debug(f"Sent ack for {record.protocol_name} serial {record.serial_number}: {response.hex().upper()}")

        if self.writer_task is not None:
            self.storage_queue.put_nowait((record, self.connection_info))

    async def _storage_writer(self):
        """Store queued records in order until the session closes"""
        loop = asyncio.get_running_loop()
        try:
            while True:
                item = await self.storage_queue.get()
                if item is None:
                    break
                record, info = item
                await self._store(loop, record, info)

            if self.device_id:
                try:
                    await loop.run_in_executor(None, self.server.store.end_device_session, self.device_id)
                except SQLAlchemyError as e:
                    logger.error(f"Failed to close device session for {self.device_id}: {e}")
                except Exception as e:
                    logger.exception(f"Unexpected error closing device session for {self.device_id}: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Storage writer for {self.peername} cancelled with {self.storage_queue.qsize()} records pending")
            raise
        finally:
            if self.state == CLOSING:
                self.state = CLOSED

    async def _store(self, loop, record: DecodedRecord, info: ConnectionInfo):
        try:
            packet_id = await loop.run_in_executor(None, self.server.store.store, record, info)
            logger.debug(f"Stored packet {packet_id} ({record.protocol_name})")
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {record.protocol_name} from {info.ip}:{info.port}: {e}")
            self.server.stats['errors'] += 1
        except Exception as e:
            logger.exception(f"Unexpected error storing {record.protocol_name} from {info.ip}:{info.port}: {e}")
            self.server.stats['errors'] += 1

    def close(self):
        """Close the transport; connection_lost finishes the teardown"""
        if self.state == OPEN:
            self.state = CLOSING
            if self.transport and not self.transport.is_closing():
                self.transport.close()

    async def _monitor_timeout(self):
        """Monitor connection timeout"""
        try:
            while True:
                await asyncio.sleep(self.server.timeout_check_interval)

                if time.time() - self.last_activity > self.server.connection_timeout:
                    logger.warning(f"Connection timeout for {self.device_id or self.peername}")
                    self.close()
                    break
        except asyncio.CancelledError:
            pass


class GPSTrackerTCPServer:
    """TCP listener for GT06 trackers"""

    def __init__(self, host: str = None, port: int = None, store: Optional[PacketStore] = None,
                 install_signal_handlers: bool = False):
        self.host = host or settings.GPS_TCP_HOST
        self.port = port if port is not None else settings.GPS_TCP_PORT
        if store is None and settings.STORE_RECORDS:
            store = PacketStore()
        self.store = store
        self.install_signal_handlers = install_signal_handlers

        self.max_connections = settings.MAX_CONNECTIONS
        self.max_buffer_size = settings.MAX_BUFFER_SIZE
        self.max_frame_length = settings.MAX_FRAME_LENGTH
        self.checksum_policy = settings.CHECKSUM_POLICY
        self.connection_timeout = settings.CONNECTION_TIMEOUT
        self.timeout_check_interval = settings.TIMEOUT_CHECK_INTERVAL

        self.server = None
        self.active_connections: Dict[str, GT06ClientProtocol] = {}
        self.writer_tasks: Set[asyncio.Task] = set()
        self.conn_manager = ConnectionManager(settings.MAX_CONNECTIONS_PER_IP)
        self.stats = {
            'start_time': None,
            'messages_received': 0,
            'valid_locations': 0,
            'errors': 0,
        }
        self.shutdown_event = asyncio.Event()

    def track_writer(self, task: asyncio.Task):
        self.writer_tasks.add(task)
        task.add_done_callback(self.writer_tasks.discard)

    def create_protocol(self) -> GT06ClientProtocol:
        return GT06ClientProtocol(self)

    async def start(self):
        """Listen until shutdown is requested"""
        self.stats['start_time'] = datetime.now()
        loop = asyncio.get_running_loop()

        if self.install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(
                    sig, lambda: asyncio.create_task(self.shutdown())
                )

        self.server = await loop.create_server(
            self.create_protocol,
            self.host,
            self.port,
            reuse_address=True
        )

        logger.info(f"GT06 TCP Server started on {self.host}:{self.port}")
        logger.info("Configuration:")
        logger.info(f"  - Max connections: {self.max_connections}")
        logger.info(f"  - Max per IP: {self.conn_manager.max_connections_per_ip}")
        logger.info(f"  - Connection timeout: {self.connection_timeout}s")
        logger.info(f"  - Checksum policy: {self.checksum_policy}")
        logger.info(f"  - Storing records: {self.store is not None}")

        async with self.server:
            await self.shutdown_event.wait()

    async def shutdown(self):
        """Graceful shutdown: stop accepting, close sessions, drain storage queues"""
        if self.shutdown_event.is_set():
            return
        logger.info("Shutting down GT06 TCP Server...")

        if self.server:
            self.server.close()

        for conn in list(self.active_connections.values()):
            conn.close()

        if self.writer_tasks:
            done, pending = await asyncio.wait(set(self.writer_tasks), timeout=SHUTDOWN_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} storage writers with unsaved records")

        if self.server:
            await self.server.wait_closed()

        self.shutdown_event.set()
        logger.info("GT06 TCP Server stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get detailed server status"""
        uptime = datetime.now() - self.stats['start_time'] if self.stats['start_time'] else timedelta(0)

        return {
            'running': self.server is not None and self.server.is_serving(),
            'host': self.host,
            'port': self.port,
            'uptime': str(uptime),
            'active_connections': len(self.active_connections),
            'total_messages': self.stats['messages_received'],
            'valid_locations': self.stats['valid_locations'],
            'errors': self.stats['errors'],
            'checksum_policy': self.checksum_policy,
            'dropped_log_records': AsyncLoggingManager().dropped_records,
            'connections': [
                {
                    'id': conn_id,
                    'device_id': conn.device_id,
                    'peername': str(conn.peername),
                    'messages': conn.message_count,
                    'pending_bytes': conn.reassembler.pending,
                    'last_activity': datetime.fromtimestamp(conn.last_activity).isoformat()
                }
                for conn_id, conn in self.active_connections.items()
            ]
        }


async def main(port: int = None):
    """Run the standalone GT06 TCP server"""
    import uuid
    from logs.logconfig import configure_logging
    from database.db_conf import init_db

    configure_logging(session_id_run=str(uuid.uuid4()))
    if settings.STORE_RECORDS:
        init_db()

    server = GPSTrackerTCPServer(port=port, install_signal_handlers=True)
    await server.start()


if __name__ == "__main__":
    asyncio.run(main(int(sys.argv[1]) if len(sys.argv) > 1 else None))
