"""
OS-level enforcement of IP bans.

Translates ban/unban requests into iptables, ufw or firewalld commands.
Enforcement is best-effort: failures are logged and reported as False, the
caller's in-memory ban state stays authoritative.
"""

import logging
from typing import List, Optional

from .host import HostRunner
from .utils import parse_address

logger = logging.getLogger(__name__)


class FirewallBlocker:
    """Adds and removes DROP rules for banned addresses."""

    # Our comment marker for iptables rules
    WARDEN_COMMENT = "WARDEN_BAN"

    BACKENDS = ('iptables', 'ufw', 'firewalld', 'none')

    def __init__(self, runner: HostRunner, backend: str = 'iptables'):
        if backend not in self.BACKENDS:
            raise ValueError(f"Unknown firewall backend '{backend}'")
        self.runner = runner
        self.backend = backend

    @staticmethod
    def _target(network) -> str:
        """Bare address for single hosts, CIDR notation for real networks."""
        if network.prefixlen == network.max_prefixlen:
            return str(network.network_address)
        return str(network)

    def _iptables_rule(self, action: str, network) -> List[str]:
        binary = 'ip6tables' if network.version == 6 else 'iptables'
        cmd = [binary, action, 'INPUT', '-s', self._target(network)]
        cmd += ['-m', 'comment', '--comment', self.WARDEN_COMMENT, '-j', 'DROP']
        return cmd

    def _firewalld_rule(self, network) -> str:
        family = 'ipv6' if network.version == 6 else 'ipv4'
        return f'rule family="{family}" source address="{self._target(network)}" reject'

    def build_command(self, address: str, block: bool) -> Optional[List[str]]:
        """Return the argv for blocking/unblocking address, or None if nothing to run."""
        if self.backend == 'none':
            return None

        network = parse_address(address)
        if network is None:
            logger.warning(f"Not a valid IP address, skipping firewall rule: {str(address)[:64]!r}")
            return None

        if self.backend == 'iptables':
            return self._iptables_rule('-I' if block else '-D', network)

        if self.backend == 'ufw':
            if block:
                return ['ufw', 'insert', '1', 'deny', 'from', self._target(network)]
            return ['ufw', 'delete', 'deny', 'from', self._target(network)]

        flag = '--add-rich-rule' if block else '--remove-rich-rule'
        return ['firewall-cmd', f'{flag}={self._firewalld_rule(network)}']

    def _apply(self, address: str, block: bool) -> bool:
        cmd = self.build_command(address, block)
        if cmd is None:
            return False

        verb = 'block' if block else 'unblock'
        try:
            rc, _, stderr = self.runner.run(cmd)
        except Exception as e:
            # Best-effort: in-memory ban state stays authoritative
            logger.error(f"Failed to {verb} {address}: {e}")
            return False

        if rc != 0:
            logger.warning(f"Failed to {verb} {address} via {self.backend}: {stderr.strip() or rc}")
            return False

        logger.info(f"Firewall {verb}: {' '.join(cmd)}")
        return True

    def block(self, address: str) -> bool:
        return self._apply(address, block=True)

    def unblock(self, address: str) -> bool:
        return self._apply(address, block=False)
