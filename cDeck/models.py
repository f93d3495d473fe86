from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NetworkCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    rx_bytes: int = 0
    tx_bytes: int = 0


class BlockIOCounter(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: str
    value: int = 0


class RawCounterSnapshot(BaseModel):
    """
    Cumulative resource counters of a container at one instant, as reported by the daemon.
    """
    model_config = ConfigDict(frozen=True)

    cpu_total: int = 0
    system_total: int = 0
    online_cpus: Optional[int] = None
    memory_usage: int = 0
    memory_limit: int = 0
    networks: Dict[str, NetworkCounters] = Field(default_factory=dict)
    block_io: List[BlockIOCounter] = Field(default_factory=list)
    read_time: Optional[datetime] = None


class ContainerStats(BaseModel):
    id: str
    name: str
    cpu_percentage: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percentage: float = 0.0
    network_rx: int = 0
    network_tx: int = 0
    block_read: int = 0
    block_write: int = 0


class PortInfo(BaseModel):
    private_port: int
    public_port: Optional[int] = None
    type: str = 'tcp'


class ContainerInfo(BaseModel):
    id: str
    name: str
    image: str
    status: str  # Human readable, e.g. `Up 2 hours`
    state: str
    created: Optional[datetime] = None
    ports: List[PortInfo] = []


class VolumeInfo(BaseModel):
    name: str
    driver: str
    mountpoint: str
    created_at: Optional[str] = None
    labels: Dict[str, str] = {}
    scope: str = 'local'
    size: int = 0


class ImageInfo(BaseModel):
    id: str
    repo_tags: List[str] = []
    repo_digests: List[str] = []
    created: Optional[datetime] = None
    size: int = 0
    virtual_size: int = 0
    shared_size: int = -1  # -1 until the daemon computed it
    labels: Dict[str, str] = {}


class IpamConfig(BaseModel):
    subnet: Optional[str] = None
    gateway: Optional[str] = None
    ip_range: Optional[str] = None


class NetworkContainer(BaseModel):
    name: str = ''
    endpoint_id: str = ''
    mac_address: str = ''
    ipv4_address: str = ''
    ipv6_address: str = ''


class NetworkInfo(BaseModel):
    id: str
    name: str
    driver: str = ''
    scope: str = 'local'
    created: Optional[datetime] = None
    internal: bool = False
    attachable: bool = False
    ingress: bool = False
    ipam_driver: Optional[str] = None
    ipam_config: List[IpamConfig] = []
    containers: Dict[str, NetworkContainer] = {}
    options: Dict[str, str] = {}
    labels: Dict[str, str] = {}


class DockerSystemInfo(BaseModel):
    containers_running: int = 0
    containers_stopped: int = 0
    containers_total: int = 0
    images_total: int = 0
    volumes_total: int = 0
    networks_total: int = 0


class SessionState(str, Enum):
    IDLE = 'idle'
    STREAMING = 'streaming'
    STOPPING = 'stopping'
    ENDED = 'ended'
    FAILED = 'failed'


class LogEventKind(str, Enum):
    DATA = 'data'
    ERROR = 'error'
    ENDED = 'ended'
    STOP_REQUESTED = 'stop_requested'


class LogEvent(BaseModel):
    kind: LogEventKind
    container_id: str
    line: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (LogEventKind.ERROR, LogEventKind.ENDED)
