#!/usr/bin/env python3
"""Modular configuration system for the withdrawal platform

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- service_config: Peer services the withdrawal service calls (account, notification)
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .service_config import PeerServiceConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

__all__ = [
    'LoggingConfig',
    'InfraConfig',
    'PeerServiceConfig',
]
