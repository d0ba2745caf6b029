"""
check-service-certs

Checks the certificates of configured services and notifies administrators
by email and Slack when a certificate is about to expire.
"""

__version__ = "1.0.0"
__build__ = "dev"
__author__ = "check-service-certs maintainers"
__description__ = "Service certificate expiration checker"

from check_service_certs.config import Config, ConfigurationError, load_config
from check_service_certs.orchestrator import CheckOrchestrator, RunSummary
from check_service_certs.services import ServiceUnit, discover_services

__all__ = [
    "CheckOrchestrator",
    "Config",
    "ConfigurationError",
    "RunSummary",
    "ServiceUnit",
    "discover_services",
    "load_config",
]
