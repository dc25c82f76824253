"""
Host metrics for the dashboard: CPU, memory, disk, network and the process
table. Every call is memoized in the shared PerformanceCache so a busy
dashboard does not re-query the kernel on every refresh.
"""

import os
import sys
import time
import socket
import logging
import platform
from typing import Any, Dict, List

import psutil

from .ttl_cache import PerformanceCache, CACHE_TTLS, cached

logger = logging.getLogger(__name__)

# psutil reports 0.0 for the first non-blocking CPU reading in a process
CPU_SAMPLE_INTERVAL = 0.1


class SystemMonitor:
    """Cached system information and process listing."""

    def __init__(self, cache: PerformanceCache, disk_path: str = '/'):
        self.cache = cache
        self.disk_path = disk_path
        self._cpu_sampled = False
        self.get_system_info = cached(cache, 'system_info', CACHE_TTLS['system_info'])(self._system_info)
        self.get_processes = cached(cache, 'process_list', CACHE_TTLS['process_list'])(self._processes)

    def _cpu(self) -> Dict[str, Any]:
        # Block briefly on the first reading, later ones measure since the previous call
        interval = None if self._cpu_sampled else CPU_SAMPLE_INTERVAL
        self._cpu_sampled = True
        return {
            'usage': psutil.cpu_percent(interval=interval),
            'cores': psutil.cpu_count(logical=True) or 1,
            'model': platform.processor() or platform.machine() or 'Unknown',
        }

    @staticmethod
    def _memory() -> Dict[str, Any]:
        mem = psutil.virtual_memory()
        used = mem.total - mem.available
        return {
            'total': mem.total,
            'used': used,
            'free': mem.available,
            'usage_percent': (used / mem.total) * 100 if mem.total else 0.0,
        }

    def _disk(self) -> Dict[str, Any]:
        try:
            usage = psutil.disk_usage(self.disk_path)
        except OSError as e:
            logger.error(f"Failed to get disk usage: {e}")
            return {'total': 0, 'used': 0, 'free': 0, 'usage_percent': 0.0}
        return {
            'total': usage.total,
            'used': usage.used,
            'free': usage.free,
            'usage_percent': usage.percent,
        }

    @staticmethod
    def _network() -> Dict[str, int]:
        counters = psutil.net_io_counters()
        if counters is None:
            logger.error("Failed to get network stats: no interfaces")
            return {'rx': 0, 'tx': 0}
        return {'rx': counters.bytes_recv, 'tx': counters.bytes_sent}

    def _system_info(self) -> Dict[str, Any]:
        if hasattr(os, 'getloadavg'):
            load_average = list(os.getloadavg())
        else:
            load_average = list(psutil.getloadavg())

        return {
            'cpu': self._cpu(),
            'memory': self._memory(),
            'disk': self._disk(),
            'network': self._network(),
            'uptime': max(0, int(time.time() - psutil.boot_time())),
            'platform': sys.platform,
            'hostname': socket.gethostname(),
            'load_average': load_average,
        }

    @staticmethod
    def _processes(limit: int = 20) -> List[Dict[str, Any]]:
        """Top processes by memory share."""
        processes = []
        attrs = ['pid', 'username', 'cpu_percent', 'memory_percent', 'cmdline', 'name']
        for proc in psutil.process_iter(attrs):
            try:
                info = proc.info
                command = ' '.join(info.get('cmdline') or []) or info.get('name') or ''
                processes.append({
                    'user': info.get('username') or '?',
                    'pid': info['pid'],
                    'cpu': info.get('cpu_percent') or 0.0,
                    'mem': round(info.get('memory_percent') or 0.0, 1),
                    'command': command,
                })
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        processes.sort(key=lambda p: p['mem'], reverse=True)
        return processes[:limit]
