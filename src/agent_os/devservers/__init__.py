"""Dev-server supervision and port allocation."""

from .detection import DetectedServer, detect_docker_services, detect_npm_scripts, detect_servers
from .docker import DockerCLI, DockerError, DockerResult
from .ports import PortAllocator, is_port_in_use
from .supervisor import DevServerError, DevServerNotFoundError, DevServerSupervisor, StartServerOptions

__all__ = [
    "DetectedServer",
    "DevServerError",
    "DevServerNotFoundError",
    "DevServerSupervisor",
    "DockerCLI",
    "DockerError",
    "DockerResult",
    "PortAllocator",
    "StartServerOptions",
    "detect_docker_services",
    "detect_npm_scripts",
    "detect_servers",
    "is_port_in_use",
]
