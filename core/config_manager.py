#!/usr/bin/env python3
"""
Centralized configuration management for microservices

Resolves per-service runtime settings from environment variables (loaded from
deployment/environments/<env>.env by core.config) and resolves peer service
endpoints without a registry: explicit env vars win, then defaults.

USAGE:
    from core.config_manager import ConfigManager

    config_manager = ConfigManager("withdrawal_service")
    config = config_manager.get_service_config()
    host, port = config_manager.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .config import InfraConfig, LoggingConfig, PeerServiceConfig

logger = logging.getLogger(__name__)


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Environment":
        aliases = {"dev": cls.DEVELOPMENT, "test": cls.TESTING, "prod": cls.PRODUCTION}
        if not value:
            return cls.DEVELOPMENT
        value = value.lower()
        if value in aliases:
            return aliases[value]
        for env in cls:
            if env.value == value:
                return env
        return cls.DEVELOPMENT


def _int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _bool(val: Optional[str], default: bool = False) -> bool:
    if val is None or val == "":
        return default
    return val.lower() in ("1", "true", "yes", "on")


@dataclass
class ServiceConfig:
    """Runtime settings of a single microservice"""

    service_name: str
    service_host: str = "0.0.0.0"
    service_port: int = 0
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"
    extra: Dict[str, Any] = field(default_factory=dict)


class ConfigManager:
    """Per-service configuration facade"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.environment = Environment.from_string(
            os.getenv("ENV") or os.getenv("ENVIRONMENT")
        )
        self.infra = InfraConfig.from_env()
        self.peers = PeerServiceConfig.from_env()
        self.logging = LoggingConfig.from_env()
        self._service_config: Optional[ServiceConfig] = None

    def _prefixed(self, key: str) -> Optional[str]:
        """Service specific env var, e.g. WITHDRAWAL_SERVICE_PORT"""
        return os.getenv(f"{self.service_name.upper()}_{key}")

    def get_service_config(self) -> ServiceConfig:
        if self._service_config is None:
            debug_default = self.environment == Environment.DEVELOPMENT
            self._service_config = ServiceConfig(
                service_name=self.service_name,
                service_host=self._prefixed("HOST") or os.getenv("SERVICE_HOST", "0.0.0.0"),
                service_port=_int(self._prefixed("PORT") or os.getenv("SERVICE_PORT"), 0),
                environment=self.environment,
                debug=_bool(os.getenv("DEBUG"), debug_default),
                log_level=self._prefixed("LOG_LEVEL") or self.logging.log_level,
            )
        return self._service_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw setting, service-prefixed variable first"""
        value = self._prefixed(key)
        if value is None:
            value = os.getenv(key)
        return default if value is None else value

    def get_int(self, key: str, default: int) -> int:
        return _int(self.get(key), default)

    def discover_service(
        self,
        service_name: str,
        default_host: str,
        default_port: int,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port of a dependency.

        Priority: explicit environment variables → defaults
        """
        host = os.getenv(env_host_key) if env_host_key else None
        port = _int(os.getenv(env_port_key), 0) if env_port_key else 0

        resolved_host = host or default_host
        resolved_port = port or default_port
        logger.debug(f"Resolved {service_name} -> {resolved_host}:{resolved_port}")
        return resolved_host, resolved_port

    def print_config_summary(self, show_secrets: bool = False):
        config = self.get_service_config()
        password = self.infra.postgres_password if show_secrets else "***"
        lines = [
            f"Configuration for {self.service_name}",
            f"  environment: {self.environment.value}",
            f"  listen: {config.service_host}:{config.service_port}",
            f"  debug: {config.debug}  log_level: {config.log_level}",
            f"  postgres: {self.infra.postgres_user}:{password}@"
            f"{self.infra.postgres_host}:{self.infra.postgres_port}/{self.infra.postgres_db}",
            f"  nats: {self.infra.nats_server}",
            f"  account_service: {self.peers.account_service_url}",
            f"  notification_service: {self.peers.notification_service_url}",
        ]
        for line in lines:
            logger.info(line)

