#!/usr/bin/env python3
"""Modular configuration system for the NBA decision service

Configuration hierarchy:
- logging_config: Logging configuration
- nba_config: Audience sizing, lifecycle and arbitration settings
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .logging_config import LoggingConfig, configure_logging
from .nba_config import NbaServiceConfig

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


@dataclass
class Settings:
    """Top-level settings"""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    nba: NbaServiceConfig = field(default_factory=NbaServiceConfig)
    environment: str = "development"

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            logging=LoggingConfig.from_env(),
            nba=NbaServiceConfig.from_env(),
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
        )


# Create global settings instance
settings = Settings.from_env()

def get_settings() -> Settings:
    """Get global settings instance"""
    return settings

def reload_settings() -> Settings:
    """Reload settings from environment"""
    global settings
    settings = Settings.from_env()
    return settings

__all__ = [
    'Settings',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'NbaServiceConfig',
    'configure_logging',
]
