#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the microservices in this repository.

COMPONENTS:
    - config/: Environment-backed configuration dataclasses (.env via python-dotenv)
    - config_manager.py: Per-service configuration facade and endpoint resolution
    - logger.py: Service logger setup
    - nats_client.py: NATS JetStream event bus for event-driven architecture
    - postgres_client.py: asyncpg connection pool wrapper

USAGE:
    from core.config_manager import ConfigManager
    from core.logger import setup_service_logger

    config = ConfigManager("withdrawal_service")
"""

from .config_manager import ConfigManager, Environment, ServiceConfig

__all__ = [
    "ConfigManager",
    "Environment",
    "ServiceConfig",
]

__version__ = "2.0.0"
