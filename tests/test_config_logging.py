"""
Settings validation and the queue-backed logging manager
"""
import io
import logging
import queue

import pytest
from pydantic import ValidationError

from config import Settings
from logs.async_logging import AsyncLoggingManager, DroppingQueueHandler, create_async_stream_handler
from logs.logconfig import configure_logging


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.GPS_TCP_PORT == 5023
    assert settings.MAX_FRAME_LENGTH == 1024
    assert settings.CONNECTION_TIMEOUT == 1800
    assert settings.CHECKSUM_POLICY == 'ignore'
    assert settings.DATABASE_URI == settings.DATABASE_URL


def test_checksum_policy_is_normalised():
    assert Settings(_env_file=None, CHECKSUM_POLICY='CRC16').CHECKSUM_POLICY == 'crc16'


def test_checksum_policy_rejects_unknown():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, CHECKSUM_POLICY='md5')


def test_environment_override(monkeypatch):
    monkeypatch.setenv('GPS_TCP_PORT', '6000')
    monkeypatch.setenv('STORE_RECORDS', 'false')
    settings = Settings(_env_file=None)
    assert settings.GPS_TCP_PORT == 6000
    assert settings.STORE_RECORDS is False


def test_async_manager_is_singleton():
    assert AsyncLoggingManager() is AsyncLoggingManager()


def test_async_manager_delivers_records():
    stream = io.StringIO()
    handler = create_async_stream_handler(stream, logging.Formatter('%(levelname)s %(message)s'))
    manager = AsyncLoggingManager()

    queue_handler = manager.setup_async_logging([handler])
    logger = logging.getLogger('gt06.test.async')
    logger.propagate = False
    logger.addHandler(queue_handler)
    logger.setLevel(logging.INFO)
    try:
        assert manager.is_running()
        logger.info("frame decoded")
    finally:
        manager.stop()
        logger.removeHandler(queue_handler)

    assert not manager.is_running()
    assert 'INFO frame decoded' in stream.getvalue()


def test_full_queue_drops_and_counts_records():
    handler = DroppingQueueHandler(queue.Queue(maxsize=1))
    record = logging.LogRecord('gt06', logging.INFO, __file__, 1, "fix stored", None, None)
    handler.handle(record)
    handler.handle(record)
    assert handler.dropped == 1
    assert handler.queue.qsize() == 1


def test_configure_logging_development(tmp_path):
    configure_logging('test-run', use_async=False, log_dir=str(tmp_path))
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)
