"""
GT06 TCP listener status endpoints
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Any
from fastapi import APIRouter, HTTPException, Request
from config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/gps-tcp", tags=["GPS TCP Server"])


async def check_tcp_port(host: str, port: int, timeout: float = 5.0) -> bool:
    """Check if TCP port is open and accepting connections"""
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
        writer.close()
        await writer.wait_closed()
        return True
    except (asyncio.TimeoutError, ConnectionRefusedError, OSError):
        return False


@router.get("/status")
async def get_gps_tcp_status(request: Request) -> Dict[str, Any]:
    """Status of the listener embedded in this process"""
    status = {
        "timestamp": datetime.now().isoformat(),
        "configured": settings.GPS_TCP_ENABLED
    }

    tcp_server = getattr(request.app.state, 'tcp_server', None)
    if tcp_server is None:
        status["running"] = False
        if settings.GPS_TCP_ENABLED:
            status["message"] = "GPS TCP Server is not running in this process"
        else:
            status["message"] = "GPS TCP Server is disabled in configuration"
        return status

    status.update(tcp_server.get_status())
    return status


@router.get("/health")
async def check_gps_tcp_health():
    """
    Health check for the GPS TCP port
    Returns 200 if the port accepts connections, 503 if not
    """
    host = '127.0.0.1' if settings.GPS_TCP_HOST in ('0.0.0.0', '') else settings.GPS_TCP_HOST
    is_running = await check_tcp_port(host, settings.GPS_TCP_PORT, timeout=3.0)

    if is_running:
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}
    raise HTTPException(
        status_code=503,
        detail=f"GPS TCP Server not responding at {host}:{settings.GPS_TCP_PORT}"
    )
