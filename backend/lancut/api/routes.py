from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import Optional

from ..core.errors import (
    ArpSendError,
    DeviceNotFoundError,
    GatewayBlockError,
    InterfaceNotFoundError,
    MacResolutionError,
    PermissionDeniedError,
    SelfBlockError,
)
from ..scanner.engine import DiscoveryEngine
from ..scanner.models import ScanSummary
from .schemas import (
    BlockResponse,
    DeviceListResponse,
    DeviceResponse,
    NetworkInfoResponse,
    ScanStatusResponse,
    ScanTriggerResponse,
)

router = APIRouter()

SCAN_MESSAGES = {
    "completed": "Scan completed",
    "cancelled": "Scan cancelled",
    "already_running": "A scan is already in progress",
}


def get_engine(request: Request) -> DiscoveryEngine:
    """Dependency for getting the engine bound to this application."""
    return request.app.state.engine


def _scan_response(summary: ScanSummary) -> ScanTriggerResponse:
    return ScanTriggerResponse(
        success=summary.status == "completed",
        message=SCAN_MESSAGES.get(summary.status, summary.status),
        status=summary.status,
        devices_found=summary.device_count,
        subnet=summary.subnet,
        started_at=summary.started_at,
        completed_at=summary.completed_at,
    )


@router.get("/devices", response_model=DeviceListResponse)
async def get_devices(
    online_only: bool = Query(False),
    search: Optional[str] = Query(None),
    engine: DiscoveryEngine = Depends(get_engine),
):
    """Get all devices with optional filtering."""
    devices = await engine.list_devices()

    if online_only:
        devices = [d for d in devices if d.is_online]

    if search:
        search_term = search.lower()
        devices = [
            d for d in devices
            if search_term in d.ip.lower()
            or search_term in d.mac.lower()
            or search_term in d.hostname.lower()
            or search_term in d.vendor.lower()
            or search_term in d.device_type.lower()
        ]

    return DeviceListResponse(
        devices=[DeviceResponse.model_validate(d) for d in devices],
        total=len(devices),
        online=sum(1 for d in devices if d.is_online),
        blocked=sum(1 for d in devices if d.is_blocked),
    )


@router.get("/devices/{ip}", response_model=DeviceResponse)
async def get_device(ip: str, engine: DiscoveryEngine = Depends(get_engine)):
    """Get a specific device by IP address."""
    try:
        device = await engine.get_device(ip)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")

    return DeviceResponse.model_validate(device)


async def _device_or_none(engine: DiscoveryEngine, ip: str) -> Optional[DeviceResponse]:
    try:
        return DeviceResponse.model_validate(await engine.get_device(ip))
    except DeviceNotFoundError:
        return None


@router.post("/devices/{ip}/block", response_model=BlockResponse)
async def block_device(ip: str, engine: DiscoveryEngine = Depends(get_engine)):
    """Cut a device's internet access."""
    try:
        await engine.block(ip)
    except (GatewayBlockError, SelfBlockError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (MacResolutionError, ArpSendError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InterfaceNotFoundError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return BlockResponse(
        success=True,
        message=f"{ip} blocked",
        device=await _device_or_none(engine, ip),
    )


@router.post("/devices/{ip}/unblock", response_model=BlockResponse)
async def unblock_device(ip: str, engine: DiscoveryEngine = Depends(get_engine)):
    """Restore a device's internet access."""
    await engine.unblock(ip)

    return BlockResponse(
        success=True,
        message=f"{ip} unblocked",
        device=await _device_or_none(engine, ip),
    )


@router.post("/scan", response_model=ScanTriggerResponse)
async def trigger_scan(engine: DiscoveryEngine = Depends(get_engine)):
    """Run a network scan and wait for it to finish."""
    try:
        summary = await engine.scan()
    except InterfaceNotFoundError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return _scan_response(summary)


@router.post("/scan/stop")
async def stop_scan(engine: DiscoveryEngine = Depends(get_engine)):
    """Cancel the running scan."""
    stopped = await engine.stop_scan()
    return {"success": stopped, "message": "Scan cancelled" if stopped else "No scan in progress"}


@router.get("/scan/status", response_model=ScanStatusResponse)
async def scan_status(engine: DiscoveryEngine = Depends(get_engine)):
    """Get the scanner progress and the result of the last scan."""
    scanner = engine.scanner
    last = scanner.last_summary
    return ScanStatusResponse(
        is_scanning=scanner.is_scanning,
        progress=scanner.progress,
        status=scanner.status,
        device_count=len(engine.registry),
        last_scan=_scan_response(last) if last else None,
    )


@router.get("/network", response_model=NetworkInfoResponse)
async def network_info(engine: DiscoveryEngine = Depends(get_engine)):
    """Get the interface the engine scans from."""
    network = engine.network or await engine.resolve_interface()
    if network is None:
        raise HTTPException(status_code=503, detail="No active network interface")

    return NetworkInfoResponse(**network.to_dict())
