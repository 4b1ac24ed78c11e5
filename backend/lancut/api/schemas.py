from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class DeviceResponse(BaseModel):
    """Device response schema."""
    model_config = ConfigDict(from_attributes=True)

    ip: str
    mac: str
    hostname: str
    vendor: str
    device_type: str
    is_online: bool
    is_blocked: bool
    is_gateway: bool
    ping_time: int
    first_seen: datetime
    last_seen: datetime
    estimated_connections: int
    display_name: str
    status_text: str
    ping_text: str
    can_block: bool


class DeviceListResponse(BaseModel):
    """Device list response."""
    devices: list[DeviceResponse]
    total: int
    online: int
    blocked: int


class NetworkInfoResponse(BaseModel):
    """Resolved interface information."""
    model_config = ConfigDict(from_attributes=True)

    local_ip: str
    subnet_mask: str
    gateway_ip: str
    local_mac: str
    interface_name: str
    cidr: str


class ScanTriggerResponse(BaseModel):
    """Scan trigger response schema."""
    success: bool
    message: str
    status: str
    devices_found: Optional[int] = None
    subnet: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ScanStatusResponse(BaseModel):
    """Current scanner state."""
    is_scanning: bool
    progress: int
    status: str
    device_count: int
    last_scan: Optional[ScanTriggerResponse] = None


class BlockResponse(BaseModel):
    """Result of a block/unblock command."""
    success: bool
    message: str
    device: Optional[DeviceResponse] = None
