import asyncio
import datetime
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import api.routes as routes
from api.gps_tcp_status import router as gps_tcp_status_router
from config import settings
from database.db_conf import check_db_connection, init_db
from logs.logconfig import configure_logging


@asynccontextmanager
async def lifespan(app):
    logger = logging.getLogger(__name__)
    is_connected, message = check_db_connection(max_retries=3)
    if not is_connected:
        logger.critical(f"Failed to connect to database: {message}")
        raise RuntimeError(f"Database connection check failed: {message}")
    logger.info(f"Database connection check: {message}")

    init_db()

    # Start GPS TCP Server if enabled
    tcp_server = None
    tcp_server_task = None
    if settings.GPS_TCP_ENABLED:
        from tcp_server.gps_tcp_server import GPSTrackerTCPServer
        tcp_server = GPSTrackerTCPServer(host=settings.GPS_TCP_HOST, port=settings.GPS_TCP_PORT)
        tcp_server_task = asyncio.create_task(tcp_server.start())
        app.state.tcp_server = tcp_server
        logger.info(f"GPS TCP Server starting on port {settings.GPS_TCP_PORT}")
    else:
        logger.info("GPS TCP Server is disabled in configuration")

    yield

    logger.info("Starting application shutdown...")
    if tcp_server is not None:
        await tcp_server.shutdown()
        try:
            await asyncio.wait_for(tcp_server_task, timeout=5)
        except asyncio.TimeoutError:
            tcp_server_task.cancel()
        except OSError as e:
            logger.error(f"GPS TCP Server failed: {e}")
    logger.info("Application shutdown completed")


app = FastAPI(title="GT06 Tracker Gateway", lifespan=lifespan)

system_startup_time = datetime.datetime.now()

session_id_run = str(uuid.uuid4())
configure_logging(session_id_run=session_id_run)

logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request(request: Request, call_next):
    logger.info(f"Incoming request: {request.method} {request.url}")
    response = await call_next(request)
    logger.info(f"Outgoing response: {response.status_code}")
    return response


app.include_router(routes.router, tags=['Tracker Data'], prefix='/api')
app.include_router(gps_tcp_status_router)


@app.get('/')
async def root():
    """Basic service status"""
    now = datetime.datetime.now()
    return {
        'service': 'GT06 Tracker Gateway',
        'status': 'up',
        'uptime': str(now - system_startup_time),
        'timestamp': now.isoformat(),
        'endpoints': {
            'health': '/api/health',
            'packets': '/api/packets',
            'gps': '/api/gps',
            'tcp_status': '/api/gps-tcp/status'
        }
    }


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=8000)
