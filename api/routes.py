import csv
import io
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse, JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from database.repository import PacketStore

logger = logging.getLogger(__name__)

router = APIRouter()

EXPORT_FORMATS = ('json', 'csv')
EXPORT_LIMIT = 1000

_store = None


def get_store() -> PacketStore:
    """Packet store shared by the API routes"""
    global _store
    if _store is None:
        _store = PacketStore()
    return _store


def storage_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Database error while {action}: {str(e)}")
    return HTTPException(status_code=500, detail=f"Failed to {action}")


@router.get("/packets")
def list_packets(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    terminal_id: Optional[str] = None,
    protocol_name: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    store: PacketStore = Depends(get_store)
):
    """Stored packets, newest first"""
    try:
        packets = store.get_packets(
            limit=limit,
            offset=offset,
            terminal_id=terminal_id,
            protocol_name=protocol_name,
            start_date=start_date,
            end_date=end_date
        )
    except SQLAlchemyError as e:
        raise storage_error("retrieve packets", e)

    return {
        "success": True,
        "data": packets,
        "pagination": {
            "offset": offset,
            "limit": limit,
            "hasMore": len(packets) == limit
        }
    }


@router.get("/packets/{packet_id}")
def get_packet(packet_id: int, store: PacketStore = Depends(get_store)):
    """A single packet with its decoded sections"""
    try:
        packet = store.get_packet(packet_id)
    except SQLAlchemyError as e:
        raise storage_error("retrieve packet", e)

    if packet is None:
        raise HTTPException(status_code=404, detail="Packet not found")
    return {"success": True, "data": packet}


@router.get("/gps")
def get_gps_data(
    terminal_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=10000),
    store: PacketStore = Depends(get_store)
):
    try:
        points = store.get_gps_data(terminal_id=terminal_id, limit=limit,
                                    start_date=start_date, end_date=end_date)
    except SQLAlchemyError as e:
        raise storage_error("retrieve GPS data", e)

    return {"success": True, "data": points, "count": len(points)}


@router.get("/gps/geojson")
def get_gps_geojson(
    terminal_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=10000),
    store: PacketStore = Depends(get_store)
):
    """GPS fixes as a GeoJSON FeatureCollection of points"""
    try:
        points = store.get_gps_data(terminal_id=terminal_id, limit=limit,
                                    start_date=start_date, end_date=end_date)
    except SQLAlchemyError as e:
        raise storage_error("retrieve GPS GeoJSON data", e)

    features = []
    for point in points:
        features.append({
            "type": "Feature",
            "geometry": {
                "type": "Point",
                "coordinates": [point.longitude, point.latitude]  # GeoJSON is lon, lat
            },
            "properties": {
                "packet_id": point.packet_id,
                "terminal_id": point.terminal_id,
                "timestamp": point.timestamp,
                "gps_time": point.gps_time,
                "speed": point.speed,
                "course": point.course,
                "satellites": point.satellites,
                "gps_positioned": point.gps_positioned
            }
        })

    return {
        "success": True,
        "data": {
            "type": "FeatureCollection",
            "features": features
        }
    }


@router.get("/devices")
def list_devices(store: PacketStore = Depends(get_store)):
    """Every terminal that has reported, most recent first"""
    try:
        devices = store.get_devices()
    except SQLAlchemyError as e:
        raise storage_error("retrieve devices list", e)
    return {"success": True, "data": devices}


@router.get("/devices/{terminal_id}/stats")
def get_device_stats(terminal_id: str, store: PacketStore = Depends(get_store)):
    try:
        stats = store.get_device_stats(terminal_id)
    except SQLAlchemyError as e:
        raise storage_error("retrieve device statistics", e)

    if stats is None:
        raise HTTPException(status_code=404, detail=f"No packets from terminal {terminal_id}")
    return {"success": True, "data": stats}


@router.get("/sessions")
def get_active_sessions(store: PacketStore = Depends(get_store)):
    try:
        sessions = store.get_active_sessions()
    except SQLAlchemyError as e:
        raise storage_error("retrieve active sessions", e)
    return {"success": True, "data": sessions}


@router.get("/stats/protocols")
def get_protocol_stats(store: PacketStore = Depends(get_store)):
    """Packet counts per protocol number"""
    try:
        stats = store.get_protocol_stats()
    except SQLAlchemyError as e:
        raise storage_error("retrieve protocol statistics", e)
    return {"success": True, "data": stats}


@router.get("/alarms")
def get_alarms(
    terminal_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    store: PacketStore = Depends(get_store)
):
    try:
        alarms = store.get_alarms(terminal_id=terminal_id, limit=limit)
    except SQLAlchemyError as e:
        raise storage_error("retrieve alarm data", e)
    return {"success": True, "data": alarms}


def rows_to_csv(rows: List[BaseModel]) -> Iterable[str]:
    """Yield a CSV document line by line, header first"""
    if not rows:
        return
    fields = list(type(rows[0]).model_fields)
    buffer = io.StringIO()
    writer = csv.writer(buffer)

    writer.writerow(fields)
    for row in rows:
        values = row.model_dump(mode='json', include=set(fields))
        writer.writerow([values.get(field) for field in fields])
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)


@router.get("/export/{export_format}")
def export_data(
    export_format: str,
    terminal_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    data_type: str = Query('packets', pattern='^(packets|gps)$'),
    store: PacketStore = Depends(get_store)
):
    """Download packets or GPS fixes as JSON or CSV"""
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Unsupported export format. Use: json, csv")

    try:
        if data_type == 'gps':
            rows = store.get_gps_data(terminal_id=terminal_id, limit=EXPORT_LIMIT,
                                      start_date=start_date, end_date=end_date)
        else:
            rows = store.get_packets(limit=EXPORT_LIMIT, terminal_id=terminal_id,
                                     start_date=start_date, end_date=end_date)
    except SQLAlchemyError as e:
        raise storage_error("export data", e)

    filename = f"{data_type}_data.{export_format}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if export_format == 'csv':
        return StreamingResponse(rows_to_csv(rows), media_type="text/csv", headers=headers)

    content = {
        "success": True,
        "data": rows,
        "exported_at": datetime.now(timezone.utc),
        "filters": {
            "terminal_id": terminal_id,
            "start_date": start_date,
            "end_date": end_date,
            "data_type": data_type
        }
    }
    return JSONResponse(content=jsonable_encoder(content), headers=headers)


@router.get("/health")
def health(store: PacketStore = Depends(get_store)):
    """Service health including a database round trip"""
    try:
        store.ping()
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {str(e)}")
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "status": "unhealthy",
                "database": "unreachable",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    return {
        "success": True,
        "status": "healthy",
        "database": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "GT06 Tracker Gateway API"
    }
