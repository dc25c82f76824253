#!/usr/bin/env python3
"""
Warden CLI - inspect the host from a terminal.

Commands:
    warden check [--json]
    warden sysinfo [--json]
    warden processes [--limit N] [--json]
    warden stats [--json]
    warden self-check
"""

import argparse
import json
import logging
import sys
from typing import TYPE_CHECKING, Optional

from . import __version__
from .config import ConfigManager
from .security import STATUS_FAIL, summarize_checks

if TYPE_CHECKING:
    from .panel import PanelServices

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_check(services: "PanelServices", as_json: bool = False) -> int:
    """Run the security checklist. Returns 1 if any check failed."""
    from tabulate import tabulate

    items = services.security.run_security_check()
    summary = summarize_checks(items)

    if as_json:
        _print_json({'checks': [item.to_dict() for item in items], 'summary': summary})
    else:
        rows = [
            [item.status.upper(), item.level.value, item.name, item.details or '', item.suggestion or '']
            for item in items
        ]
        print(tabulate(rows, headers=['Status', 'Level', 'Check', 'Details', 'Suggestion']))
        print(f"\nScore: {summary['score']}/100 "
              f"({summary['pass']} passed, {summary['warning']} warnings, {summary['fail']} failed)")

    return 1 if summary[STATUS_FAIL] else 0


def cmd_sysinfo(services: "PanelServices", as_json: bool = False) -> int:
    from tabulate import tabulate

    info = services.system_monitor.get_system_info()
    if as_json:
        _print_json(info)
        return 0

    gib = 1024 ** 3
    rows = [
        ['Hostname', info['hostname']],
        ['Platform', info['platform']],
        ['Uptime', f"{info['uptime'] // 3600}h {info['uptime'] % 3600 // 60}m"],
        ['CPU', f"{info['cpu']['usage']:.1f}% of {info['cpu']['cores']} cores ({info['cpu']['model']})"],
        ['Load', ' '.join(f"{v:.2f}" for v in info['load_average'])],
        ['Memory', f"{info['memory']['used'] / gib:.1f} / {info['memory']['total'] / gib:.1f} GiB "
                   f"({info['memory']['usage_percent']:.1f}%)"],
        ['Disk', f"{info['disk']['used'] / gib:.1f} / {info['disk']['total'] / gib:.1f} GiB "
                 f"({info['disk']['usage_percent']:.1f}%)"],
        ['Network', f"rx {info['network']['rx']} B, tx {info['network']['tx']} B"],
    ]
    print(tabulate(rows, tablefmt='plain'))
    return 0


def cmd_processes(services: "PanelServices", limit: int = 20, as_json: bool = False) -> int:
    from tabulate import tabulate

    processes = services.system_monitor.get_processes(limit)
    if as_json:
        _print_json(processes)
    else:
        print(tabulate(processes, headers='keys'))
    return 0


def cmd_stats(services: "PanelServices", as_json: bool = False) -> int:
    from tabulate import tabulate

    stats = services.resource_monitor.get_stats()
    if as_json:
        _print_json(stats)
    else:
        rows = [[key, value] for key, value in stats.items() if key != 'memory']
        rows += [[f"memory.{key} (MB)", value] for key, value in stats['memory'].items()]
        print(tabulate(rows, tablefmt='plain'))
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='warden',
        description='Server panel security and monitoring core',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  warden check
  warden processes --limit 10
  warden sysinfo --json
"""
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--config', help=f'Config file (default: {ConfigManager.CONFIG_PATH})')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    check = subparsers.add_parser('check', help='Run the host security checklist')
    check.add_argument('--json', action='store_true', help='Print JSON instead of a table')

    sysinfo = subparsers.add_parser('sysinfo', help='Show system information')
    sysinfo.add_argument('--json', action='store_true', help='Print JSON instead of a table')

    processes = subparsers.add_parser('processes', help='List top processes by memory')
    processes.add_argument('--limit', type=int, default=20, help='Number of processes (default: 20)')
    processes.add_argument('--json', action='store_true', help='Print JSON instead of a table')

    stats = subparsers.add_parser('stats', help='Show resource usage of this process')
    stats.add_argument('--json', action='store_true', help='Print JSON instead of a table')

    subparsers.add_parser('self-check', help='Verify runtime dependencies')

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = ConfigManager.load_config(args.config)
    setup_logging(args.verbose, config.get('log_file'))

    if args.command == 'self-check':
        from .startup_validator import run_self_check
        return 0 if run_self_check() else 1

    from .panel import PanelServices

    services = PanelServices(config)
    if args.command == 'check':
        return cmd_check(services, args.json)
    if args.command == 'sysinfo':
        return cmd_sysinfo(services, args.json)
    if args.command == 'processes':
        return cmd_processes(services, args.limit, args.json)
    if args.command == 'stats':
        return cmd_stats(services, args.json)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
