"""
Configuration package for the damage claim engine.

Holds the environment-driven settings and the logging setup.
"""

import logging

from damage_claims.config.settings import (
    ClaimLimits,
    GatewaySettings,
    LoggingSettings,
    SchedulerSettings,
    Settings,
)

# Settings singleton for app-wide use
settings = Settings()


def configure_logging(logging_settings: LoggingSettings) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, logging_settings.level, logging.INFO),
        format=logging_settings.format,
    )


__all__ = [
    "ClaimLimits",
    "GatewaySettings",
    "LoggingSettings",
    "SchedulerSettings",
    "Settings",
    "configure_logging",
    "settings",
]
