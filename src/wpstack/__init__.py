"""wpstack - Docker Compose WordPress deployment with Nginx and Let's Encrypt."""

__version__ = "1.0.0"

# Export programmatic API
from .env import DeploymentConfig, load_config
from .errors import DeployError
from .orchestrator import Orchestrator, Stage, restart
from .services import ContainerProfile, ContainerSupervisor, ServiceHealth
from .ssl import CertificateManager, CertificateState, CertificateStatus

__all__ = [
    "DeploymentConfig",
    "load_config",
    "DeployError",
    "Orchestrator",
    "Stage",
    "restart",
    "ContainerProfile",
    "ContainerSupervisor",
    "ServiceHealth",
    "CertificateManager",
    "CertificateState",
    "CertificateStatus",
]
