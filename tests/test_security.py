"""Tests for the security manager: login tracking, bans and host checks."""

import pytest
from unittest.mock import patch, MagicMock

from warden.firewall import FirewallBlocker
from warden.security import (
    SecurityManager,
    SecurityCheckItem,
    RiskLevel,
    IPBanRecord,
    summarize_checks,
)

from conftest import FakeHostRunner


@pytest.fixture
def manager(runner):
    return SecurityManager(runner=runner)


class TestLoginAttempts:

    def test_five_failures_ban_address(self, manager, runner):
        for _ in range(5):
            manager.record_login_attempt("192.168.1.101", False)

        assert manager.is_ip_banned("192.168.1.101") is True
        record = manager.get_banned_ips()[0]
        assert record.failed_attempts == 5
        assert record.reason == "5 consecutive failed login attempts"
        assert manager.get_failed_attempts("192.168.1.101") == 0
        assert runner.calls_starting_with('iptables', '-I', 'INPUT', '-s', '192.168.1.101')

    def test_four_failures_do_not_ban(self, manager):
        for _ in range(4):
            manager.record_login_attempt("192.168.1.101", False)

        assert manager.is_ip_banned("192.168.1.101") is False
        assert manager.get_failed_attempts("192.168.1.101") == 4

    def test_success_resets_counter(self, manager):
        manager.record_login_attempt("192.168.1.102", False)
        manager.record_login_attempt("192.168.1.102", False)
        manager.record_login_attempt("192.168.1.102", True)
        manager.record_login_attempt("192.168.1.102", False)

        assert manager.is_ip_banned("192.168.1.102") is False
        assert manager.get_failed_attempts("192.168.1.102") == 1

    def test_success_does_not_lift_ban(self, manager):
        manager.ban_ip("192.168.1.103", "manual")
        manager.record_login_attempt("192.168.1.103", True)
        assert manager.is_ip_banned("192.168.1.103") is True

    def test_counters_are_per_address(self, manager):
        for _ in range(4):
            manager.record_login_attempt("10.0.0.1", False)
        manager.record_login_attempt("10.0.0.2", False)

        assert manager.get_failed_attempts("10.0.0.1") == 4
        assert manager.get_failed_attempts("10.0.0.2") == 1

    @patch('time.time')
    def test_auto_ban_lasts_one_hour(self, mock_time, manager):
        mock_time.return_value = 1000.0
        for _ in range(5):
            manager.record_login_attempt("10.0.0.9", False)

        mock_time.return_value = 1000.0 + 3599
        assert manager.is_ip_banned("10.0.0.9") is True

        mock_time.return_value = 1000.0 + 3601
        assert manager.is_ip_banned("10.0.0.9") is False

    def test_custom_threshold(self, runner):
        manager = SecurityManager(runner=runner, max_failed_attempts=2)
        manager.record_login_attempt("10.0.0.3", False)
        assert manager.is_ip_banned("10.0.0.3") is False
        manager.record_login_attempt("10.0.0.3", False)
        assert manager.is_ip_banned("10.0.0.3") is True


class TestBans:

    def test_ban_and_unban(self, manager, runner):
        manager.ban_ip("192.168.1.100", "Test ban")
        assert manager.is_ip_banned("192.168.1.100") is True

        assert manager.unban_ip("192.168.1.100") is True
        assert manager.is_ip_banned("192.168.1.100") is False
        assert runner.calls_starting_with('iptables', '-D', 'INPUT', '-s', '192.168.1.100')

    def test_unban_unknown_address_is_noop(self, manager, runner):
        manager.ban_ip("10.0.0.1", "other")
        runner.calls.clear()

        assert manager.unban_ip("10.0.0.2") is False
        assert runner.calls == []
        assert [r.ip for r in manager.get_banned_ips()] == ["10.0.0.1"]

    def test_ban_records_pending_failures(self, manager):
        manager.record_login_attempt("10.0.0.4", False)
        manager.record_login_attempt("10.0.0.4", False)
        record = manager.ban_ip("10.0.0.4", "manual")

        assert record.failed_attempts == 2
        assert manager.get_failed_attempts("10.0.0.4") == 0

    @patch('time.time')
    def test_temporary_ban_expires_lazily(self, mock_time, manager, runner):
        mock_time.return_value = 1000.0
        manager.ban_ip("192.168.1.103", "Temporary ban", 0.1)
        assert manager.is_ip_banned("192.168.1.103") is True

        mock_time.return_value = 1000.15
        # Listing does not filter expired records
        assert len(manager.get_banned_ips()) == 1

        assert manager.is_ip_banned("192.168.1.103") is False
        assert manager.get_banned_ips() == []
        assert runner.calls_starting_with('iptables', '-D', 'INPUT', '-s', '192.168.1.103')

    @patch('time.time')
    def test_temporary_ban_expires_via_sweep(self, mock_time, manager):
        mock_time.return_value = 1000.0
        manager.ban_ip("192.168.1.104", "Temporary ban", 0.1)
        manager.ban_ip("192.168.1.105", "Longer ban", 3600)

        mock_time.return_value = 1000.15
        assert manager.clean_expired_bans() == 1
        assert [r.ip for r in manager.get_banned_ips()] == ["192.168.1.105"]
        assert manager.is_ip_banned("192.168.1.104") is False

    @patch('time.time')
    def test_permanent_ban_survives_sweep(self, mock_time, manager):
        mock_time.return_value = 1000.0
        record = manager.ban_ip("10.0.0.5", "permanent")
        assert record.is_permanent

        mock_time.return_value = 1000.0 + 365 * 24 * 3600
        assert manager.clean_expired_bans() == 0
        assert manager.is_ip_banned("10.0.0.5") is True

    def test_rebanning_replaces_record(self, manager):
        manager.ban_ip("10.0.0.6", "first", 60)
        manager.ban_ip("10.0.0.6", "second")

        records = manager.get_banned_ips()
        assert len(records) == 1
        assert records[0].reason == "second"
        assert records[0].expires_at is None

    def test_reban_does_not_duplicate_firewall_rule(self, manager, runner):
        manager.ban_ip("10.0.0.7", "manual")
        manager.ban_ip("10.0.0.7", "manual again", 60)
        for _ in range(5):
            manager.record_login_attempt("10.0.0.7", False)

        assert manager.unban_ip("10.0.0.7") is True

        inserts = runner.calls_starting_with('iptables', '-I', 'INPUT', '-s', '10.0.0.7')
        deletes = runner.calls_starting_with('iptables', '-D', 'INPUT', '-s', '10.0.0.7')
        assert len(inserts) == 1
        assert len(deletes) == 1

    @patch('time.time')
    def test_reban_during_expiry_keeps_firewall_rule(self, mock_time, manager, runner):
        mock_time.return_value = 1000.0
        manager.ban_ip("10.0.0.8", "short", 0.1)
        mock_time.return_value = 1000.5

        # Another thread re-bans the address between the expiry and the firewall update
        sync = manager._sync_firewall
        rebanned = []

        def reban_then_sync(address):
            if not rebanned:
                rebanned.append(address)
                manager.ban_ip(address, "fresh", 3600)
            sync(address)

        with patch.object(manager, '_sync_firewall', side_effect=reban_then_sync):
            assert manager.is_ip_banned("10.0.0.8") is False

        assert manager.is_ip_banned("10.0.0.8") is True
        assert runner.calls_starting_with('iptables', '-D', 'INPUT', '-s', '10.0.0.8') == []
        assert len(runner.calls_starting_with('iptables', '-I', 'INPUT', '-s', '10.0.0.8')) == 1

    def test_firewall_failure_does_not_block_ban(self, runner):
        runner.commands[('iptables', '-I', 'INPUT', '-s', '10.0.0.7', '-m', 'comment',
                         '--comment', 'WARDEN_BAN', '-j', 'DROP')] = (1, '', 'Permission denied')
        manager = SecurityManager(runner=runner)

        manager.ban_ip("10.0.0.7", "test")
        assert manager.is_ip_banned("10.0.0.7") is True

    def test_firewall_exception_does_not_block_ban(self, runner):
        runner.run = MagicMock(side_effect=RuntimeError("boom"))
        manager = SecurityManager(runner=runner)

        manager.ban_ip("10.0.0.8", "test")
        assert manager.is_ip_banned("10.0.0.8") is True

    def test_invalid_address_banned_in_memory_only(self, manager, runner):
        manager.ban_ip("not-an-ip; rm -rf /", "junk")

        assert manager.is_ip_banned("not-an-ip; rm -rf /") is True
        assert runner.calls == []

    def test_disabled_enforcement_runs_no_commands(self, runner):
        manager = SecurityManager(runner=runner, firewall=FirewallBlocker(runner, backend='none'))
        manager.ban_ip("10.0.0.10", "test")
        manager.unban_ip("10.0.0.10")
        assert runner.calls == []

    @patch('time.time')
    def test_ban_record_to_dict(self, mock_time):
        record = IPBanRecord(ip="10.0.0.1", reason="r", banned_at=0.0, expires_at=3600.0, failed_attempts=5)
        data = record.to_dict()
        assert data['banned_at'] == '1970-01-01T00:00:00+00:00'
        assert data['expires_at'] == '1970-01-01T01:00:00+00:00'
        assert data['failed_attempts'] == 5

        mock_time.return_value = 3601.0
        assert record.is_expired() is True


SSHD_SECURE = """
# Managed by ops
Port 2222
PermitRootLogin no
PasswordAuthentication no
"""

SSHD_INSECURE = """
#PermitRootLogin no
PermitRootLogin yes
"""

PS_HEADER = "USER PID %CPU %MEM VSZ RSS TTY STAT START TIME COMMAND\n"


class TestSecurityChecks:

    EXPECTED_IDS = [
        'ssh_config', 'firewall_status', 'system_updates', 'weak_passwords',
        'open_ports', 'suspicious_processes', 'file_permissions', 'system_logs',
    ]

    def test_run_security_check_on_bare_host(self, manager):
        results = manager.run_security_check()

        assert [r.id for r in results] == self.EXPECTED_IDS
        for check in results:
            assert check.id and check.name and check.description
            assert check.level in set(RiskLevel)
            assert check.status in ('pass', 'fail', 'warning')

    def test_failing_check_degrades_to_warning(self, manager):
        with patch.object(manager, 'check_open_ports', side_effect=RuntimeError("ss crashed")):
            results = manager.run_security_check()

        assert len(results) == len(self.EXPECTED_IDS)
        open_ports = results[4]
        assert open_ports.id == 'open_ports'
        assert open_ports.status == 'warning'
        assert "ss crashed" in open_ports.details

    def test_ssh_config_secure(self, runner, manager):
        runner.files['/etc/ssh/sshd_config'] = SSHD_SECURE
        result = manager.check_ssh_config()
        assert result.status == 'pass'
        assert result.level == RiskLevel.LOW

    def test_ssh_config_root_login_and_default_port(self, runner, manager):
        runner.files['/etc/ssh/sshd_config'] = SSHD_INSECURE
        result = manager.check_ssh_config()
        assert result.status == 'fail'
        assert result.level == RiskLevel.HIGH
        assert "Root login: allowed" in result.details
        assert "password authentication: on" in result.details

    def test_ssh_config_unreadable(self, manager):
        result = manager.check_ssh_config()
        assert result.status == 'warning'
        assert result.level == RiskLevel.MEDIUM

    @pytest.mark.parametrize("commands, expected_status", [
        ({('which', 'ufw'): (0, '/usr/sbin/ufw\n', ''),
          ('ufw', 'status'): (0, 'Status: active\n', '')}, 'pass'),
        ({('which', 'ufw'): (0, '/usr/sbin/ufw\n', ''),
          ('ufw', 'status'): (0, 'Status: inactive\n', '')}, 'fail'),
        ({('which', 'firewall-cmd'): (0, '/usr/bin/firewall-cmd\n', ''),
          ('firewall-cmd', '--state'): (0, 'running\n', '')}, 'pass'),
        ({('which', 'firewall-cmd'): (0, '/usr/bin/firewall-cmd\n', ''),
          ('firewall-cmd', '--state'): (252, 'not running\n', '')}, 'fail'),
        ({}, 'fail'),
    ])
    def test_firewall_status(self, commands, expected_status):
        manager = SecurityManager(runner=FakeHostRunner(commands=commands))
        assert manager.check_firewall_status().status == expected_status

    def test_system_updates_many_pending(self, runner, manager):
        listing = "Listing... Done\n" + "".join(
            f"pkg{i}/jammy-updates 1.{i} amd64 [upgradable from: 1.0]\n" for i in range(12)
        )
        runner.commands[('apt', 'list', '--upgradable')] = (0, listing, '')

        result = manager.check_system_updates()
        assert result.status == 'warning'
        assert result.level == RiskLevel.MEDIUM
        assert "12" in result.details

    def test_system_updates_few_pending(self, runner, manager):
        runner.commands[('apt', 'list', '--upgradable')] = (0, "Listing... Done\n", '')
        assert manager.check_system_updates().status == 'pass'

    def test_open_ports_counted(self, runner, manager):
        lines = "Netid State Recv-Q Send-Q Local Address:Port\n" + \
            "tcp LISTEN 0 128 0.0.0.0:22 0.0.0.0:*\n" * 3 + \
            "udp UNCONN 0 0 0.0.0.0:68 0.0.0.0:*\n"
        runner.commands[('ss', '-tuln')] = (0, lines, '')

        result = manager.check_open_ports()
        assert result.status == 'pass'
        assert result.details == "Listening ports: 3"

    def test_open_ports_too_many(self, runner, manager):
        lines = "tcp LISTEN 0 128 0.0.0.0:1 0.0.0.0:*\n" * 21
        runner.commands[('ss', '-tuln')] = (0, lines, '')
        assert manager.check_open_ports().status == 'warning'

    def test_suspicious_process_detected(self, runner, manager):
        ps = PS_HEADER + \
            "nobody 4242 99.0 5.0 1 1 ? R 10:00 99:00 /tmp/.x/XMRig --donate-level 1\n" + \
            "root 1 0.1 0.1 1 1 ? Ss 10:00 0:01 /sbin/init\n"
        runner.commands[('ps', 'aux', '--sort=-%cpu')] = (0, ps, '')

        result = manager.check_suspicious_processes()
        assert result.status == 'fail'
        assert result.level == RiskLevel.CRITICAL
        assert "XMRig" in result.details

    def test_suspicious_process_only_top_five(self, runner, manager):
        busy = "root 10 1.0 0.1 1 1 ? S 10:00 0:01 /usr/bin/worker\n" * 5
        ps = PS_HEADER + busy + "nobody 99 0.0 0.1 1 1 ? S 10:00 0:00 xmrig\n"
        runner.commands[('ps', 'aux', '--sort=-%cpu')] = (0, ps, '')
        assert manager.check_suspicious_processes().status == 'pass'

    @pytest.mark.parametrize("modes, expected_status", [
        ({'/etc/passwd': 0o644, '/etc/shadow': 0o640, '/etc/ssh/sshd_config': 0o644}, 'pass'),
        ({'/etc/shadow': 0o000}, 'pass'),
        ({'/etc/shadow': 0o644}, 'fail'),
        ({'/etc/passwd': 0o666}, 'fail'),
        ({'/etc/ssh/sshd_config': 0o646}, 'fail'),
        ({}, 'pass'),
    ])
    def test_file_permissions(self, modes, expected_status):
        manager = SecurityManager(runner=FakeHostRunner(modes=modes))
        assert manager.check_file_permissions().status == expected_status

    def test_auth_log_brute_force(self, runner, manager):
        runner.files['/var/log/auth.log'] = (
            "Oct 19 10:00:00 host sshd[1]: Failed password for root from 10.0.0.1 port 22 ssh2\n" * 60
        )
        result = manager.check_system_logs()
        assert result.status == 'fail'
        assert result.level == RiskLevel.HIGH

    def test_auth_log_quiet(self, runner, manager):
        runner.files['/var/log/auth.log'] = "Oct 19 10:00:00 host sshd[1]: Accepted publickey for ops\n"
        assert manager.check_system_logs().status == 'pass'

    def test_auth_log_keeps_last_hundred_failures(self, runner, manager):
        failed = "Oct 19 10:00:00 host sshd[1]: Failed password for root from 10.0.0.1 port 22 ssh2\n"
        accepted = "Oct 19 10:00:01 host sshd[2]: Accepted publickey for ops\n"
        runner.files['/var/log/auth.log'] = (failed + accepted) * 250

        with patch.object(runner, 'read_text', side_effect=AssertionError("auth log read whole")):
            result = manager.check_system_logs()

        assert result.status == 'fail'
        assert result.details == "100 failed password attempts among the last 100 recorded"

    def test_auth_log_missing(self, manager):
        result = manager.check_system_logs()
        assert result.status == 'warning'
        assert "Could not read /var/log/auth.log" in result.details

    def test_weak_password_advisory(self, manager):
        result = manager.check_weak_passwords()
        assert result.status == 'warning'
        assert result.suggestion

    def test_item_to_dict_omits_empty_fields(self):
        item = SecurityCheckItem(id='x', name='X', description='d', level=RiskLevel.HIGH, status='pass')
        assert item.to_dict() == {'id': 'x', 'name': 'X', 'description': 'd', 'level': 'high', 'status': 'pass'}


class TestSummary:

    def _item(self, level, status):
        return SecurityCheckItem(id='x', name='X', description='d', level=level, status=status)

    def test_all_pass(self):
        summary = summarize_checks([self._item(RiskLevel.LOW, 'pass')] * 3)
        assert summary == {'pass': 3, 'fail': 0, 'warning': 0, 'total': 3, 'score': 100}

    def test_penalties(self):
        summary = summarize_checks([
            self._item(RiskLevel.CRITICAL, 'fail'),   # -25
            self._item(RiskLevel.HIGH, 'fail'),       # -15
            self._item(RiskLevel.MEDIUM, 'warning'),  # -4
        ])
        assert summary['score'] == 56
        assert summary['fail'] == 2
        assert summary['warning'] == 1

    def test_score_floors_at_zero(self):
        summary = summarize_checks([self._item(RiskLevel.CRITICAL, 'fail')] * 10)
        assert summary['score'] == 0
