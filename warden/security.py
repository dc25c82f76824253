"""
Warden - Security Manager

Tracks failed logins per source address, maintains time-bounded IP bans
(mirrored into the host firewall on a best-effort basis) and runs a
checklist-style inspection of the host's security posture.
"""

import re
import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .firewall import FirewallBlocker
from .host import HostRunner, SubprocessHostRunner

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


STATUS_PASS = 'pass'
STATUS_FAIL = 'fail'
STATUS_WARNING = 'warning'


@dataclass
class SecurityCheckItem:
    """Result of a single host inspection."""
    id: str
    name: str
    description: str
    level: RiskLevel
    status: str  # pass, fail, warning
    suggestion: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = asdict(self)
        data['level'] = self.level.value
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class IPBanRecord:
    """A ban on a source address. expires_at of None means permanent."""
    ip: str
    reason: str
    banned_at: float
    expires_at: Optional[float] = None
    failed_attempts: int = 0

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        if now is None:
            now = time.time()
        return self.expires_at < now

    def to_dict(self) -> Dict[str, object]:
        def iso(ts):
            return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat() if ts is not None else None

        return {
            'ip': self.ip,
            'reason': self.reason,
            'banned_at': iso(self.banned_at),
            'expires_at': iso(self.expires_at),
            'failed_attempts': self.failed_attempts,
        }


# Process names commonly used by cryptominers and similar payloads
SUSPICIOUS_PROCESS_PATTERNS = ['miner', 'xmrig', 'cryptonight', 'malware']

SSHD_CONFIG = '/etc/ssh/sshd_config'
AUTH_LOG = '/var/log/auth.log'
CRITICAL_FILES = ['/etc/passwd', '/etc/shadow', SSHD_CONFIG]

# Modes accepted for /etc/shadow (640 is the Debian root:shadow default)
SHADOW_MODES = (0o000, 0o400, 0o600, 0o640)

MAX_PENDING_UPDATES = 10
MAX_LISTENING_PORTS = 20
MAX_FAILED_PASSWORDS = 50


class SecurityManager:
    """Failed-login tracking, IP banning and host security checks.

    Per address the state is clean (no counter, no ban), warned (counter
    below the threshold) or banned (ban record present). A successful login
    clears the counter but never lifts an existing ban.
    """

    MAX_FAILED_ATTEMPTS = 5
    BAN_DURATION = 3600  # seconds

    # check id -> (name, description, level reported when the check itself breaks)
    CHECKS = {
        'ssh_config': ('SSH configuration', 'Checks that the SSH daemon is configured securely', RiskLevel.MEDIUM),
        'firewall_status': ('Firewall status', 'Checks that a host firewall is enabled', RiskLevel.MEDIUM),
        'system_updates': ('System updates', 'Checks for pending package updates', RiskLevel.LOW),
        'weak_passwords': ('Weak passwords', 'Checks that system users are held to a password policy', RiskLevel.MEDIUM),
        'open_ports': ('Open ports', 'Checks the number of listening network ports', RiskLevel.LOW),
        'suspicious_processes': ('Suspicious processes', 'Checks running processes for known malware signatures', RiskLevel.LOW),
        'file_permissions': ('File permissions', 'Checks permissions of critical system files', RiskLevel.LOW),
        'system_logs': ('Authentication log', 'Checks the authentication log for brute-force activity', RiskLevel.LOW),
    }

    def __init__(
        self,
        runner: Optional[HostRunner] = None,
        firewall: Optional[FirewallBlocker] = None,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        ban_duration: float = BAN_DURATION,
    ):
        self.runner = runner or SubprocessHostRunner()
        self.firewall = firewall if firewall is not None else FirewallBlocker(self.runner)
        self.max_failed_attempts = max_failed_attempts
        self.ban_duration = ban_duration

        self._banned: Dict[str, IPBanRecord] = {}
        self._attempts: Dict[str, int] = {}
        # Addresses with a firewall rule issued; guarded by _firewall_lock
        self._blocked: Set[str] = set()
        self._lock = threading.RLock()
        # Lock order: _firewall_lock before _lock
        self._firewall_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Login attempts and bans
    # ------------------------------------------------------------------

    def record_login_attempt(self, address: str, success: bool) -> None:
        """Record a login attempt; the threshold-th consecutive failure bans the address."""
        with self._lock:
            if success:
                self._attempts.pop(address, None)
                return

            attempts = self._attempts.get(address, 0) + 1
            self._attempts[address] = attempts
            if attempts < self.max_failed_attempts:
                logger.debug(f"Failed login from {address} ({attempts}/{self.max_failed_attempts})")
                return

            record = self._store_ban(
                address, f"{attempts} consecutive failed login attempts", self.ban_duration
            )

        logger.warning(f"Auto-banned {address} after {record.failed_attempts} failed login attempts")
        self._sync_firewall(address)

    def _store_ban(self, address: str, reason: str, duration: Optional[float]) -> IPBanRecord:
        now = time.time()
        record = IPBanRecord(
            ip=address,
            reason=reason,
            banned_at=now,
            expires_at=now + duration if duration is not None else None,
            failed_attempts=self._attempts.pop(address, 0),
        )
        self._banned[address] = record
        return record

    def _sync_firewall(self, address: str) -> None:
        """Bring the firewall rule for address in line with the ban map.

        Issues at most one block per ban and one unblock per lift, no matter
        how many times an address is re-banned or which thread lifts it.
        """
        with self._firewall_lock:
            with self._lock:
                banned = address in self._banned
            blocked = address in self._blocked

            if banned and not blocked:
                self._blocked.add(address)
                self.firewall.block(address)
            elif blocked and not banned:
                self._blocked.discard(address)
                self.firewall.unblock(address)

    def ban_ip(self, address: str, reason: str, duration: Optional[float] = None) -> IPBanRecord:
        """Ban address for duration seconds (None = permanent).

        The in-memory ban always takes effect; the firewall rule is best-effort.
        Re-banning replaces the record without adding a second rule.
        """
        with self._lock:
            record = self._store_ban(address, reason, duration)

        logger.info(f"Banned {address}: {reason} ({'permanent' if duration is None else f'{duration}s'})")
        self._sync_firewall(address)
        return record

    def unban_ip(self, address: str) -> bool:
        """Lift a ban. Returns False (and does nothing) if address was not banned."""
        with self._lock:
            record = self._banned.pop(address, None)

        if record is None:
            return False

        logger.info(f"Unbanned {address}")
        self._sync_firewall(address)
        return True

    def is_ip_banned(self, address: str) -> bool:
        """Authoritative ban check; an expired ban is lifted as a side effect."""
        with self._lock:
            record = self._banned.get(address)
            if record is None:
                return False
            if not record.is_expired():
                return True
            del self._banned[address]

        logger.info(f"Ban on {address} expired")
        self._sync_firewall(address)
        return False

    def get_banned_ips(self) -> List[IPBanRecord]:
        """Snapshot of ban records, including expired ones not yet swept."""
        with self._lock:
            return list(self._banned.values())

    def get_failed_attempts(self, address: str) -> int:
        with self._lock:
            return self._attempts.get(address, 0)

    def clean_expired_bans(self) -> int:
        """Lift every expired ban. Returns the number of bans lifted."""
        now = time.time()
        with self._lock:
            expired = [ip for ip, record in self._banned.items() if record.is_expired(now)]
            for ip in expired:
                del self._banned[ip]

        for ip in expired:
            self._sync_firewall(ip)
        if expired:
            logger.info(f"Ban sweep lifted {len(expired)} expired bans")
        return len(expired)

    # ------------------------------------------------------------------
    # Security checks
    # ------------------------------------------------------------------

    def _item(self, check_id: str, level: RiskLevel, status: str,
              suggestion: Optional[str] = None, details: Optional[str] = None) -> SecurityCheckItem:
        name, description, _ = self.CHECKS[check_id]
        return SecurityCheckItem(
            id=check_id,
            name=name,
            description=description,
            level=level,
            status=status,
            suggestion=suggestion,
            details=details,
        )

    def _guarded(self, check_id: str, check: Callable[[], SecurityCheckItem]) -> SecurityCheckItem:
        try:
            return check()
        except Exception as e:
            logger.warning(f"Security check {check_id} failed: {e}")
            fallback_level = self.CHECKS[check_id][2]
            return self._item(check_id, fallback_level, STATUS_WARNING,
                              details=f"Check could not be completed: {e}")

    def run_security_check(self) -> List[SecurityCheckItem]:
        """Run every host inspection in a fixed order. Never raises."""
        checks = [
            ('ssh_config', self.check_ssh_config),
            ('firewall_status', self.check_firewall_status),
            ('system_updates', self.check_system_updates),
            ('weak_passwords', self.check_weak_passwords),
            ('open_ports', self.check_open_ports),
            ('suspicious_processes', self.check_suspicious_processes),
            ('file_permissions', self.check_file_permissions),
            ('system_logs', self.check_system_logs),
        ]
        return [self._guarded(check_id, check) for check_id, check in checks]

    @staticmethod
    def _sshd_directives(content: str) -> Dict[str, List[str]]:
        directives: Dict[str, List[str]] = {}
        for line in content.splitlines():
            line = line.split('#', 1)[0].strip()
            if not line:
                continue
            parts = line.split(None, 1)
            if len(parts) == 2:
                directives.setdefault(parts[0].lower(), []).append(parts[1].strip().lower())
        return directives

    def check_ssh_config(self) -> SecurityCheckItem:
        try:
            content = self.runner.read_text(SSHD_CONFIG)
        except OSError as e:
            return self._item('ssh_config', RiskLevel.MEDIUM, STATUS_WARNING,
                              details=f"Could not read {SSHD_CONFIG}: {e}")

        directives = self._sshd_directives(content)
        permit_root = 'yes' in directives.get('permitrootlogin', [])
        password_auth = 'no' not in directives.get('passwordauthentication', [])
        ports = directives.get('port', ['22'])
        default_port = all(port == '22' for port in ports)

        details = (f"Root login: {'allowed' if permit_root else 'denied'}, "
                   f"default port: {'yes' if default_port else 'no'}, "
                   f"password authentication: {'on' if password_auth else 'off'}")

        if permit_root or default_port:
            return self._item(
                'ssh_config', RiskLevel.HIGH, STATUS_FAIL,
                suggestion="Disable direct root login, move SSH off port 22 and use key authentication",
                details=details,
            )
        return self._item('ssh_config', RiskLevel.LOW, STATUS_PASS, details=details)

    def check_firewall_status(self) -> SecurityCheckItem:
        if self.runner.which('ufw'):
            rc, stdout, _ = self.runner.run(['ufw', 'status'])
            if rc == 0 and re.search(r'^Status:\s*active\b', stdout, re.MULTILINE):
                return self._item('firewall_status', RiskLevel.LOW, STATUS_PASS,
                                  details="UFW firewall is active")

        if self.runner.which('firewall-cmd'):
            rc, stdout, _ = self.runner.run(['firewall-cmd', '--state'])
            if rc == 0 and stdout.strip() == 'running':
                return self._item('firewall_status', RiskLevel.LOW, STATUS_PASS,
                                  details="firewalld is running")

        return self._item('firewall_status', RiskLevel.HIGH, STATUS_FAIL,
                          suggestion="Enable a host firewall (ufw or firewalld) to protect the server")

    def check_system_updates(self) -> SecurityCheckItem:
        rc, stdout, stderr = self.runner.run(['apt', 'list', '--upgradable'])
        if rc != 0:
            return self._item('system_updates', RiskLevel.LOW, STATUS_WARNING,
                              details=f"Could not query pending updates: {stderr.strip() or rc}")

        count = sum(1 for line in stdout.splitlines()
                    if '/' in line and not line.startswith('Listing'))
        if count > MAX_PENDING_UPDATES:
            return self._item(
                'system_updates', RiskLevel.MEDIUM, STATUS_WARNING,
                suggestion=f"{count} packages can be upgraded, update the system soon",
                details=f"Pending updates: {count}",
            )
        return self._item('system_updates', RiskLevel.LOW, STATUS_PASS,
                          details=f"Pending updates: {count}")

    def check_weak_passwords(self) -> SecurityCheckItem:
        # Advisory only, password hashes are never inspected
        return self._item(
            'weak_passwords', RiskLevel.MEDIUM, STATUS_WARNING,
            suggestion="Review user passwords regularly and enforce a strong password policy",
            details="Require at least 8 characters mixing upper and lower case letters, digits and symbols",
        )

    def check_open_ports(self) -> SecurityCheckItem:
        rc, stdout, stderr = self.runner.run(['ss', '-tuln'])
        if rc != 0:
            return self._item('open_ports', RiskLevel.LOW, STATUS_WARNING,
                              details=f"Could not list listening ports: {stderr.strip() or rc}")

        count = sum(1 for line in stdout.splitlines() if 'LISTEN' in line)
        if count > MAX_LISTENING_PORTS:
            return self._item(
                'open_ports', RiskLevel.MEDIUM, STATUS_WARNING,
                suggestion="Many ports are listening, close services that are not needed",
                details=f"Listening ports: {count}",
            )
        return self._item('open_ports', RiskLevel.LOW, STATUS_PASS,
                          details=f"Listening ports: {count}")

    def check_suspicious_processes(self) -> SecurityCheckItem:
        rc, stdout, stderr = self.runner.run(['ps', 'aux', '--sort=-%cpu'])
        if rc != 0:
            return self._item('suspicious_processes', RiskLevel.LOW, STATUS_WARNING,
                              details=f"Could not list processes: {stderr.strip() or rc}")

        top = stdout.strip().splitlines()[1:6]
        suspicious = [line.strip() for line in top
                      if any(p in line.lower() for p in SUSPICIOUS_PROCESS_PATTERNS)]
        if suspicious:
            return self._item(
                'suspicious_processes', RiskLevel.CRITICAL, STATUS_FAIL,
                suggestion="Suspicious processes found, inspect and terminate them immediately",
                details="Suspicious processes: " + '; '.join(suspicious),
            )
        return self._item('suspicious_processes', RiskLevel.LOW, STATUS_PASS)

    def check_file_permissions(self) -> SecurityCheckItem:
        issues = []
        for path in CRITICAL_FILES:
            try:
                mode = self.runner.file_mode(path)
            except OSError:
                # Missing or not stat-able, nothing to judge
                continue

            if path == '/etc/shadow' and mode not in SHADOW_MODES:
                issues.append(f"{path} permissions too open: {mode:03o}")
            elif path == '/etc/passwd' and mode & 0o022:
                issues.append(f"{path} is writable by group/others: {mode:03o}")
            elif path == SSHD_CONFIG and mode & 0o002:
                issues.append(f"{path} is world writable: {mode:03o}")

        if issues:
            return self._item(
                'file_permissions', RiskLevel.HIGH, STATUS_FAIL,
                suggestion="Tighten the permissions of the files listed",
                details='; '.join(issues),
            )
        return self._item('file_permissions', RiskLevel.LOW, STATUS_PASS)

    def check_system_logs(self) -> SecurityCheckItem:
        try:
            failures = deque(
                (line for line in self.runner.iter_lines(AUTH_LOG) if 'Failed password' in line),
                maxlen=100,
            )
        except OSError as e:
            return self._item('system_logs', RiskLevel.LOW, STATUS_WARNING,
                              details=f"Could not read {AUTH_LOG}: {e}")

        if len(failures) > MAX_FAILED_PASSWORDS:
            return self._item(
                'system_logs', RiskLevel.HIGH, STATUS_FAIL,
                suggestion="Many failed logins detected, the host may be under a brute-force attack",
                details=f"{len(failures)} failed password attempts among the last 100 recorded",
            )
        return self._item('system_logs', RiskLevel.LOW, STATUS_PASS,
                          details=f"{len(failures)} recent failed password attempts")


# Score penalty per failed item, halved for warnings
_PENALTIES = {
    RiskLevel.CRITICAL: 25,
    RiskLevel.HIGH: 15,
    RiskLevel.MEDIUM: 8,
    RiskLevel.LOW: 3,
}


def summarize_checks(items: List[SecurityCheckItem]) -> Dict[str, int]:
    """Count results per status and compute a 0-100 security score."""
    summary = {STATUS_PASS: 0, STATUS_FAIL: 0, STATUS_WARNING: 0}
    score = 100.0
    for item in items:
        summary[item.status] = summary.get(item.status, 0) + 1
        if item.status == STATUS_FAIL:
            score -= _PENALTIES[item.level]
        elif item.status == STATUS_WARNING:
            score -= _PENALTIES[item.level] / 2
    summary['total'] = len(items)
    summary['score'] = max(0, int(score))
    return summary
