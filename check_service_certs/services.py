"""
Service definitions for check-service-certs.
"""

import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Tuple

from check_service_certs.config import Config, ServiceSettings, parse_duration
from check_service_certs.logger import get_logger

DEFAULT_MIN_CERT_LIFETIME = "720h"
UNNAMED_SERVICE_KEY = "global"
NAMED_SERVICES_KEY = "namedServices"
UNNAMED_SERVICE_NAME = "Unnamed Service"

logger = get_logger("services")


class PolicyParseError(ValueError):
    """A minimum certificate lifetime could not be parsed."""


@dataclass(frozen=True)
class ServiceUnit:
    """A named service, its certificate paths and its expiry policy."""

    name: str
    cert_paths: Tuple[str, ...]
    min_cert_lifetime: timedelta


def _service_settings(config: Config, key: str) -> Optional[ServiceSettings]:
    # Service names may contain dots, so only the first one separates the section
    if key == UNNAMED_SERVICE_KEY:
        return config.global_settings
    section, _, name = key.partition(".")
    if section == NAMED_SERVICES_KEY:
        return config.named_services.get(name)
    return None


def _parse_lifetime(value: str) -> timedelta:
    try:
        lifetime = parse_duration(value)
    except ValueError as e:
        raise PolicyParseError(str(e)) from e
    if lifetime <= timedelta(0):
        raise PolicyParseError(f"Certificate lifetime must be positive, got {value!r}")
    return lifetime


def resolve_min_cert_lifetime(config: Config, key: str, service_name: str) -> timedelta:
    """
    Resolve the minimum certificate lifetime for a service.

    The service-scoped value wins, then the global value, then the hardcoded
    default. A value that does not parse is logged and skipped.
    """
    settings = _service_settings(config, key)
    service_value = settings.min_cert_lifetime if settings is not None else None
    if service_value and key != UNNAMED_SERVICE_KEY:
        try:
            return _parse_lifetime(service_value)
        except PolicyParseError as e:
            logger.error(
                f"Could not parse duration for certificate lifetime: {e}. Using global value",
                extra={"service": service_name, "error_type": "PolicyParseError"},
            )

    global_value = config.global_settings.min_cert_lifetime
    if global_value:
        try:
            return _parse_lifetime(global_value)
        except PolicyParseError as e:
            logger.error(
                f"Could not parse duration for certificate lifetime (global): {e}. "
                f"Using default of {DEFAULT_MIN_CERT_LIFETIME}",
                extra={"service": service_name, "error_type": "PolicyParseError"},
            )
    else:
        logger.debug(
            f"No certificate lifetime configured. Using default of {DEFAULT_MIN_CERT_LIFETIME}",
            extra={"service": service_name},
        )

    return parse_duration(DEFAULT_MIN_CERT_LIFETIME)


def build_service(config: Config, key: str, override_name: Optional[str] = None) -> ServiceUnit:
    """
    Build a service from the configuration found under a key.

    Args:
        config: Loaded configuration
        key: Config key of the service, e.g. 'namedServices.myservice'
        override_name: Display name; defaults to the key

    Returns:
        The service unit
    """
    name = override_name or key
    settings = _service_settings(config, key)
    cert_paths = settings.cert_paths if settings is not None else []
    return ServiceUnit(
        name=name,
        cert_paths=tuple(str(path) for path in cert_paths),
        min_cert_lifetime=resolve_min_cert_lifetime(config, key, name),
    )


async def discover_services(
    config: Config,
    service_name: Optional[str] = None,
    executor: Optional[Executor] = None,
) -> List[ServiceUnit]:
    """
    Build every service to check.

    Args:
        config: Loaded configuration
        service_name: Restrict the run to this named service
        executor: Executor for the config lookups (default executor if None)

    Returns:
        Services in configuration order, the unnamed service first
    """
    loop = asyncio.get_running_loop()

    if service_name:
        if service_name not in config.named_services:
            logger.warning(
                f"Service {service_name} is not configured under namedServices",
                extra={"service": service_name},
            )
        service = await loop.run_in_executor(
            executor, build_service, config, f"{NAMED_SERVICES_KEY}.{service_name}", service_name
        )
        return [service]

    lookups = [(UNNAMED_SERVICE_KEY, UNNAMED_SERVICE_NAME)]
    lookups.extend((f"{NAMED_SERVICES_KEY}.{name}", name) for name in config.named_services)

    tasks = [
        loop.run_in_executor(executor, build_service, config, key, name) for key, name in lookups
    ]
    services = list(await asyncio.gather(*tasks))

    logger.debug(f"Discovered {len(services)} services: {', '.join(s.name for s in services)}")
    return services
