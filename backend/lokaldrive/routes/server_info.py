"""Server info: the LAN addresses other devices can use to reach this server."""
import logging
import socket

from fastapi import APIRouter, Depends

from lokaldrive.config import Settings
from lokaldrive.dependencies import get_settings
from lokaldrive.schemas.common import ServerInfoResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["server"])


def get_local_ips() -> list[str]:
    """Non-loopback IPv4 addresses of this host."""
    ips: set[str] = set()
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            ips.add(info[4][0])
    except socket.gaierror as e:
        logger.debug("Hostname lookup failed: %s", e)

    # Connecting a UDP socket sends nothing but selects the outbound interface
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ips.add(s.getsockname()[0])
    except OSError as e:
        logger.debug("Outbound interface lookup failed: %s", e)

    return sorted(ip for ip in ips if not ip.startswith("127."))


def server_urls(port: int, ips: list[str]) -> list[str]:
    return [f"http://{ip}:{port}" for ip in ips]


@router.get("/server-info", response_model=ServerInfoResponse)
async def server_info(settings: Settings = Depends(get_settings)):
    """Port, LAN IPs and ready-to-open URLs."""
    ips = get_local_ips()
    return ServerInfoResponse(port=settings.API_PORT, ips=ips, urls=server_urls(settings.API_PORT, ips))
