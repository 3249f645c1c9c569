"""Distributed report archiving for the analytics reporting API."""

from .config import ArchiveConfig, ConfigurationError
from .cron import CronArchiver

__all__ = ["ArchiveConfig", "ConfigurationError", "CronArchiver"]
