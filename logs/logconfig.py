import logging
import os
from logging.config import dictConfig
from config import settings
from logs.async_logging import AsyncLoggingManager, create_async_rotating_file_handler, create_async_stream_handler


def configure_logging(session_id_run, use_async=True, log_dir=None):
    """Configure root logging for the gateway process"""
    log_level = logging.INFO if settings.PROD else logging.DEBUG
    log_format = f'%(asctime)s %(name)-12s %(levelname)-8s [SESSION_ID: {session_id_run}] %(message)s'
    log_dir = log_dir or settings.LOG_DIR
    log_file = os.path.join(log_dir, 'gt06_gateway.log')

    if settings.PROD:
        os.makedirs(log_dir, exist_ok=True)

    queue_handler = None
    if use_async and settings.PROD:
        async_manager = AsyncLoggingManager()
        formatter = logging.Formatter(log_format)

        stream_handler = create_async_stream_handler(formatter=formatter)
        stream_handler.setLevel(log_level)

        file_handler = create_async_rotating_file_handler(
            filename=log_file,
            max_bytes=1024 * 1024 * 5,  # 5 MB
            backup_count=10,
            formatter=formatter
        )
        file_handler.setLevel(log_level)

        queue_handler = async_manager.setup_async_logging([stream_handler, file_handler])

        # Root handlers are replaced by dictConfig; the queue handler goes on afterwards
        LOGGING_CONFIG = dict(
            version=1,
            disable_existing_loggers=False,
            root={
                'handlers': [],
                'level': log_level,
            },
        )
    else:
        handlers = ['h', 'file'] if settings.PROD else ['h']

        LOGGING_CONFIG = dict(
            version=1,
            disable_existing_loggers=False,
            formatters={
                'f': {
                    'format': log_format,
                },
            },
            handlers={
                'h': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'f',
                    'level': log_level,
                },
            },
            root={
                'handlers': handlers,
                'level': log_level,
            },
        )

        if settings.PROD:
            LOGGING_CONFIG['handlers']['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'filename': log_file,
                'formatter': 'f',
                'level': log_level,
                'maxBytes': 1024 * 1024 * 5,  # 5 MB
                'backupCount': 10,
            }

    dictConfig(LOGGING_CONFIG)
    if queue_handler is not None:
        logging.getLogger().addHandler(queue_handler)
