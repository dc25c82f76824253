import json
import logging
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages panel core configuration"""

    DEFAULT_CONFIG = {
        'max_failed_attempts': 5,
        'ban_duration_seconds': 3600,
        'cache_sweep_interval': 300,
        'ban_sweep_interval': 600,
        'command_timeout': 5,
        'firewall_enforcement': True,
        'firewall_backend': 'iptables',
    }

    CONFIG_PATH = Path('/etc/warden/config.json')

    # key -> (minimum, maximum)
    INT_RANGES = {
        'max_failed_attempts': (1, 100),
        'ban_duration_seconds': (60, 30 * 24 * 3600),
        'cache_sweep_interval': (10, 86400),
        'ban_sweep_interval': (10, 86400),
        'command_timeout': (1, 60),
    }

    FIREWALL_BACKENDS = ['iptables', 'ufw', 'firewalld', 'none']

    @classmethod
    def _validate_int(cls, config: Dict[str, Any], key: str) -> int:
        default = cls.DEFAULT_CONFIG[key]
        low, high = cls.INT_RANGES[key]
        value = config.get(key, default)
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid {key} value, using default {default}")
            return default
        if value < low:
            logger.warning(f"{key} too low ({value}), using minimum {low}")
            return low
        if value > high:
            logger.warning(f"{key} too high ({value}), using maximum {high}")
            return high
        return value

    @classmethod
    def validate_config(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate configuration values.

        SECURITY: Prevents:
        - Path traversal via malicious log paths
        - Disabling ban enforcement via absurd thresholds or durations
        - Unknown firewall backends being invoked

        Args:
            config: Raw configuration dictionary

        Returns:
            Validated and sanitized configuration
        """
        validated = {}

        for key in cls.INT_RANGES:
            validated[key] = cls._validate_int(config, key)

        validated['firewall_enforcement'] = bool(
            config.get('firewall_enforcement', cls.DEFAULT_CONFIG['firewall_enforcement'])
        )

        backend = config.get('firewall_backend', cls.DEFAULT_CONFIG['firewall_backend'])
        if backend not in cls.FIREWALL_BACKENDS:
            logger.warning(f"Invalid firewall_backend '{backend}', using 'iptables'")
            backend = 'iptables'
        validated['firewall_backend'] = backend

        # Validate log_file path if present
        if 'log_file' in config:
            log_file = Path(config['log_file'])
            # SECURITY: must resolve into a log location
            safe_log_dirs = ['/var/log', '/tmp']
            try:
                log_file = log_file.resolve()  # Resolve symlinks
                is_safe = any(str(log_file).startswith(safe_dir + '/') for safe_dir in safe_log_dirs)
                if not is_safe:
                    logger.warning(f"Log file path {log_file} not in safe directory, ignoring")
                else:
                    validated['log_file'] = str(log_file)
            except (OSError, RuntimeError, TypeError) as e:
                logger.warning(f"Invalid log_file path: {e}")

        return validated

    @classmethod
    def load_config(cls, path: Path = None) -> Dict[str, Any]:
        """Load configuration from file or return defaults"""
        path = Path(path) if path else cls.CONFIG_PATH
        if path.exists():
            try:
                # SECURITY: Check if config path is a symlink to prevent symlink attacks
                if path.is_symlink():
                    logger.error(f"Config path {path} is a symlink, refusing to load")
                    return cls.DEFAULT_CONFIG.copy()

                with open(path) as f:
                    raw_config = json.load(f)

                if not isinstance(raw_config, dict):
                    logger.error(f"Config file {path} must contain a JSON object")
                    return cls.DEFAULT_CONFIG.copy()

                validated = cls.validate_config(raw_config)

                # Merge with defaults to ensure all keys exist
                return {**cls.DEFAULT_CONFIG, **validated}
            except ValueError as e:
                # JSONDecodeError and UnicodeDecodeError
                logger.error(f"Invalid JSON in config file: {e}")
            except OSError as e:
                logger.error(f"Error loading config: {e}")

        return cls.DEFAULT_CONFIG.copy()
