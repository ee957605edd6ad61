#!/usr/bin/env python3
"""
Core Module

Shared components for the NBA decision service.

COMPONENTS:
    - config/: Environment-driven configuration (logging, decision core settings)

USAGE:
    from core.config import get_settings

    settings = get_settings()
    sample_size = settings.nba.audience_sample_size
"""

__version__ = "1.0.0"
