"""
Queue-backed logging for the gateway process.

Tracker sessions log from the event loop; the handlers that touch the
console and the rotating files run on a QueueListener thread instead.
When the queue is full, records are dropped and counted rather than
blocking the loop.
"""
import atexit
import logging
import queue
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import List, Optional

DEFAULT_QUEUE_SIZE = 10000


class DroppingQueueHandler(QueueHandler):
    """QueueHandler that never blocks; a full queue drops the record"""

    def __init__(self, log_queue: queue.Queue):
        super().__init__(log_queue)
        self.dropped = 0

    def enqueue(self, record: logging.LogRecord):
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class AsyncLoggingManager:
    """Process-wide owner of the log queue and its listener thread"""

    _instance: Optional['AsyncLoggingManager'] = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, '_initialized'):
            self._initialized = True
            self.log_queue: Optional[queue.Queue] = None
            self.queue_listener: Optional[QueueListener] = None
            self.queue_handler: Optional[DroppingQueueHandler] = None
            self.handlers: List[logging.Handler] = []
            atexit.register(self.stop)

    def setup_async_logging(self, handlers: List[logging.Handler], respect_handler_level: bool = True,
                            max_queue_size: int = DEFAULT_QUEUE_SIZE) -> DroppingQueueHandler:
        """
        Start a listener thread feeding the given handlers and return the
        handler loggers should write to. Calling it again replaces the
        previous listener.
        """
        if self.queue_listener:
            self.stop()

        self.log_queue = queue.Queue(maxsize=max_queue_size)
        self.handlers = handlers
        self.queue_listener = QueueListener(self.log_queue, *handlers, respect_handler_level=respect_handler_level)
        self.queue_listener.start()
        self.queue_handler = DroppingQueueHandler(self.log_queue)
        return self.queue_handler

    @property
    def dropped_records(self) -> int:
        return self.queue_handler.dropped if self.queue_handler else 0

    def stop(self):
        """Drain the queue, then flush and close the handlers"""
        if self.queue_listener:
            self.queue_listener.stop()
            self.queue_listener = None
            if self.dropped_records:
                notice = logging.LogRecord(__name__, logging.WARNING, __file__, 0,
                                           "%d log records dropped on a full queue",
                                           (self.dropped_records,), None)
                for handler in self.handlers:
                    handler.handle(notice)

        for handler in self.handlers:
            handler.flush()
            handler.close()
        self.handlers = []

    def is_running(self) -> bool:
        return self.queue_listener is not None


def create_async_rotating_file_handler(filename: str, max_bytes: int = 5 * 1024 * 1024, backup_count: int = 10,
                                       formatter: logging.Formatter = None) -> RotatingFileHandler:
    handler = RotatingFileHandler(filename=filename, maxBytes=max_bytes, backupCount=backup_count)
    if formatter:
        handler.setFormatter(formatter)
    return handler


def create_async_stream_handler(stream=None, formatter: logging.Formatter = None) -> logging.StreamHandler:
    handler = logging.StreamHandler(stream)
    if formatter:
        handler.setFormatter(formatter)
    return handler
