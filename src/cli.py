#!/usr/bin/env python3
"""CLI entry point for netrestore.

Commands:
- run: Discover each target's address and restore its machine network
- discover: Look up each target's current address only (no changes)
- validate: Check target config and preflight requirements
- list: List configured targets

Examples:
    netrestore run -T rhel-dr
    netrestore run -T rhel-dr -T win-dr --parallel 2 --json-output
    netrestore discover --config-file ./targets/rhel-dr.yaml
"""

import argparse
import json
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from config import ConfigError, RestoreConfig, get_base_dir, list_targets, load_config_file, load_target_config
from scenarios import run_targets
from validation import format_preflight_results, run_preflight_checks, validate_readiness

COMMANDS = {
    "run": "Discover address and restore machine network",
    "discover": "Discover current address only (no changes)",
    "validate": "Validate target config and preflight requirements",
    "list": "List configured targets",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    try:
        return version('netrestore')
    except PackageNotFoundError:
        return 'dev'


def _common_parser(command: str) -> argparse.ArgumentParser:
    """Build argument parser with options shared by all commands."""
    parser = argparse.ArgumentParser(
        prog=f'netrestore {command}',
        description=COMMANDS[command],
    )
    parser.add_argument(
        '--target', '-T',
        action='append',
        default=[],
        help='Target name from <config-dir>/targets/ (repeatable)',
    )
    parser.add_argument(
        '--config-file', '-f',
        action='append',
        type=Path,
        default=[],
        help='Path to a standalone target file (repeatable)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _run_parser(command: str) -> argparse.ArgumentParser:
    """Parser for commands that execute a scenario."""
    parser = _common_parser(command)
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        default=get_base_dir() / 'reports',
        help='Directory for run reports',
    )
    parser.add_argument(
        '--skip', '-s',
        action='append',
        default=[],
        help='Phases to skip (can be repeated)',
    )
    parser.add_argument(
        '--timeout', '-t',
        type=int,
        help='Overall per-target timeout in seconds (checked between phases)',
    )
    parser.add_argument(
        '--parallel', '-p',
        type=int,
        default=1,
        help='Number of targets to process concurrently',
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview phases without executing',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _handle_sigterm(signum, frame):
    # Unwind normally so open SSH sessions are closed
    raise SystemExit(128 + signum)


def _load_configs(args) -> list[RestoreConfig]:
    """Load and validate every requested target.

    Raises:
        ConfigError: If no target was given or any config is invalid
    """
    if not args.target and not args.config_file:
        available = list_targets()
        raise ConfigError(
            "Specify at least one target with -T or --config-file.\n"
            f"Available targets: {', '.join(available) if available else 'none configured'}"
        )

    configs = [load_target_config(name) for name in args.target]
    configs += [load_config_file(path) for path in args.config_file]

    names = [c.name for c in configs]
    if len(set(names)) != len(names):
        raise ConfigError(f"Duplicate target names: {', '.join(names)}")
    return configs


def _preflight(configs: list[RestoreConfig]) -> int | None:
    """Returns None if all targets are ready, else exit code 1."""
    failed = False
    for config in configs:
        errors = validate_readiness(config)
        if errors:
            failed = True
            print(f"\nPre-flight validation failed for '{config.name}':", file=sys.stderr)
            for error in errors:
                for i, line in enumerate(error.split('\n')):
                    prefix = "  ✗ " if i == 0 else "    "
                    print(f"{prefix}{line}", file=sys.stderr)
    if failed:
        print("\nUse --skip-preflight to bypass these checks", file=sys.stderr)
        return 1
    logger.info("Pre-flight validation passed")
    return None


def _execute(command: str, scenario_name: str, argv: list) -> int:
    parser = _run_parser(command)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        configs = _load_configs(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.skip_preflight and not args.dry_run:
        rc = _preflight(configs)
        if rc is not None:
            return rc

    signal.signal(signal.SIGTERM, _handle_sigterm)
    orchestrators = run_targets(
        configs, scenario_name, args.report_dir,
        workers=args.parallel,
        skip_phases=args.skip,
        timeout=args.timeout,
        dry_run=args.dry_run,
    )

    if args.dry_run:
        return 0

    all_passed = all(o.report.success for o in orchestrators.values())

    if args.json_output:
        output = [o.report.to_dict(o.context) for o in orchestrators.values()]
        print(json.dumps(output if len(output) > 1 else output[0], indent=2))
        return 0 if all_passed else 1

    for name, o in orchestrators.items():
        report = o.report
        if not report.success:
            print(f"{name}: FAILED: {report.error}")
        elif command == 'discover':
            print(f"{name}: {o.context.get('endpoint_name')} {o.context.get('endpoint_address')}")
        else:
            print(f"{name}: PASSED ({report.outcome})")

    return 0 if all_passed else 1


def run_main(argv: list) -> int:
    return _execute('run', 'machine-network-restore', argv)


def discover_main(argv: list) -> int:
    return _execute('discover', 'endpoint-discover', argv)


def validate_main(argv: list) -> int:
    """Validate config and run preflight checks without touching targets."""
    args = _common_parser('validate').parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        configs = _load_configs(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    all_passed = True
    output = {}
    for config in configs:
        results = run_preflight_checks(config)
        passed = all(not cat['failed'] for cat in results.values())
        all_passed = all_passed and passed
        if args.json_output:
            output[config.name] = {'success': passed, 'checks': results}
        else:
            print(format_preflight_results(config.name, results))

    if args.json_output:
        print(json.dumps(output, indent=2))
    return 0 if all_passed else 1


def list_main(argv: list) -> int:
    args = _common_parser('list').parse_args(argv)
    targets = list_targets()
    if args.json_output:
        print(json.dumps(targets))
    elif targets:
        print('\n'.join(targets))
    else:
        print("No targets configured")
    return 0


def print_usage():
    print(f"netrestore {get_version()}")
    print()
    print("Usage: netrestore <command> [options]")
    print()
    print("Commands:")
    for command, desc in COMMANDS.items():
        print(f"  {command:<10} {desc}")
    print()
    print("Run 'netrestore <command> --help' for command-specific options.")


def main(argv: list | None = None) -> int:
    """CLI entry point - dispatch to command handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        print_usage()
        return 0
    if argv[0] in ('--help', '-h'):
        print_usage()
        return 0
    if argv[0] == '--version':
        print(f"netrestore {get_version()}")
        return 0

    handlers = {
        'run': run_main,
        'discover': discover_main,
        'validate': validate_main,
        'list': list_main,
    }
    command, rest = argv[0], argv[1:]
    if command not in handlers:
        print(f"Error: Unknown command '{command}'")
        print_usage()
        return 1
    return handlers[command](rest)


if __name__ == '__main__':
    sys.exit(main())
