"""
Self-monitoring for the panel process: request/error counters, uptime and
memory footprint.
"""

import time
import threading
from typing import Any, Dict, Optional

import psutil

from .ttl_cache import PerformanceCache
from .utils import bytes_to_mb


class ResourceMonitor:
    """Tracks how much load the panel process itself is under."""

    def __init__(self, cache: Optional[PerformanceCache] = None):
        self.cache = cache
        self._lock = threading.Lock()
        self._process = psutil.Process()
        self.start_time = time.time()
        self.request_count = 0
        self.error_count = 0

    def record_request(self) -> None:
        with self._lock:
            self.request_count += 1

    def record_error(self) -> None:
        with self._lock:
            self.error_count += 1

    def _memory(self) -> Dict[str, int]:
        info = self._process.memory_info()
        # data/shared are Linux-only fields
        return {
            'rss': bytes_to_mb(info.rss),
            'heap_total': bytes_to_mb(info.vms),
            'heap_used': bytes_to_mb(getattr(info, 'data', info.rss)),
            'external': bytes_to_mb(getattr(info, 'shared', 0)),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of counters, uptime (seconds) and memory (MB)."""
        with self._lock:
            uptime = time.time() - self.start_time
            request_count = self.request_count
            error_count = self.error_count

        return {
            'uptime_seconds': max(0, int(uptime)),
            'request_count': request_count,
            'error_count': error_count,
            'memory': self._memory(),
            'cache_size': self.cache.size() if self.cache is not None else 0,
        }

    def reset(self) -> None:
        with self._lock:
            self.start_time = time.time()
            self.request_count = 0
            self.error_count = 0
