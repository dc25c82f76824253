"""
Process-lifetime container for the panel's stateful services.

The web layer builds one PanelServices at startup, calls start(), hands the
components to its request handlers and calls stop() at shutdown.
"""

import logging
from typing import Any, Dict, Optional

from .config import ConfigManager
from .firewall import FirewallBlocker
from .host import HostRunner, SubprocessHostRunner
from .resource_monitor import ResourceMonitor
from .security import SecurityManager
from .sweeper import PeriodicTask
from .system_monitor import SystemMonitor
from .ttl_cache import PerformanceCache

logger = logging.getLogger(__name__)


class PanelServices:
    """Owns the cache, monitors, security manager and their sweep timers."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, runner: Optional[HostRunner] = None):
        self.config = {**ConfigManager.DEFAULT_CONFIG, **(config or {})}
        self.runner = runner or SubprocessHostRunner(timeout=self.config['command_timeout'])

        backend = self.config['firewall_backend'] if self.config['firewall_enforcement'] else 'none'
        self.firewall = FirewallBlocker(self.runner, backend=backend)

        self.cache = PerformanceCache()
        self.resource_monitor = ResourceMonitor(self.cache)
        self.system_monitor = SystemMonitor(self.cache)
        self.security = SecurityManager(
            runner=self.runner,
            firewall=self.firewall,
            max_failed_attempts=self.config['max_failed_attempts'],
            ban_duration=self.config['ban_duration_seconds'],
        )

        self.cache_sweeper = PeriodicTask(
            'cache-sweep', self.config['cache_sweep_interval'], self.cache.cleanup_expired
        )
        self.ban_sweeper = PeriodicTask(
            'ban-sweep', self.config['ban_sweep_interval'], self.security.clean_expired_bans
        )

    @classmethod
    def from_config_file(cls, path=None, runner: Optional[HostRunner] = None) -> 'PanelServices':
        return cls(ConfigManager.load_config(path), runner=runner)

    def start(self) -> None:
        self.cache_sweeper.start()
        self.ban_sweeper.start()
        logger.info(f"Panel services started (firewall backend: {self.firewall.backend})")

    def stop(self) -> None:
        self.cache_sweeper.stop()
        self.ban_sweeper.stop()
        logger.info("Panel services stopped")

    def __enter__(self) -> 'PanelServices':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
