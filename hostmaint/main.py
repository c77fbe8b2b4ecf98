#!/usr/bin/env python3

"""
hostmaint - Main Entry Point
----------------------------

Command-line interface for the hostmaint maintenance jobs. Each mutating
subcommand builds its preflight checks and action, then hands them to the
JobRunner, which takes care of locking, dry runs and notification.

Exit status:
    0   job ran and succeeded, or had nothing to do
    1   job ran and failed
    2   usage error
    3   job did not run (lock held, preflight failed, not root, bad config)
    128+N  job interrupted by signal N
"""

import sys
import logging
import argparse
from datetime import timedelta
from typing import Dict, Any, List, Optional

from hostmaint.actions import ActionError, create_action
from hostmaint.actions.certificates import CertificateInventory, CertStatus
from hostmaint.actions.package_update import PackageUpdateAction, UpdateType
from hostmaint.checks import create_preflight_checks
from hostmaint.config import load_config, ConfigurationError, ConfigurationManager
from hostmaint.job_runner import JobRunner, JobNotRunError, JobInterrupted
from hostmaint.logger import setup_logging, LogManager
from hostmaint.models import JobCategory, RunOptions
from hostmaint.utils.process import CommandError, is_root
from hostmaint.version import __version__

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_NOT_RUN = 3

EXAMPLE_CONFIG_PATH = "hostmaint.example.json"

def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='hostmaint',
        description='hostmaint - Unattended host maintenance jobs'
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument(
        '-c', '--config',
        help='Path to configuration file',
        type=str,
        default=None
    )
    config_group.add_argument(
        '--generate-config',
        help=f'Generate example configuration file (default: {EXAMPLE_CONFIG_PATH})',
        nargs='?',
        const=EXAMPLE_CONFIG_PATH,
        metavar='PATH'
    )

    misc_group = parser.add_argument_group('Miscellaneous')
    misc_group.add_argument(
        '--debug',
        help='Enable debug logging',
        action='store_true'
    )
    misc_group.add_argument(
        '--version',
        help='Show version information',
        action='store_true'
    )

    dry_run = argparse.ArgumentParser(add_help=False)
    dry_run.add_argument(
        '-n', '--dry-run',
        help='Show what would be done without changing anything',
        action='store_true'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')

    # update
    update = subparsers.add_parser(
        'update', parents=[dry_run], help='Update system packages'
    )
    update.add_argument(
        '-t', '--type',
        help='Upgrade type (default: from configuration)',
        choices=[t.value for t in UpdateType],
        default=None
    )
    update.add_argument(
        '--check',
        help='List pending updates and exit',
        action='store_true'
    )
    update.add_argument(
        '-r', '--auto-reboot',
        help='Schedule a reboot when one is required',
        action='store_true',
        default=None
    )

    # cleanup
    cleanup = subparsers.add_parser(
        'cleanup', parents=[dry_run], help='Rotate and clean up logs'
    )
    cleanup.add_argument(
        '-d', '--dir',
        help='Additional log directory (repeatable)',
        action='append',
        dest='dirs',
        default=[]
    )
    cleanup.add_argument('-a', '--max-age', help='Delete logs older than DAYS', type=int, metavar='DAYS')
    cleanup.add_argument('-s', '--max-size', help='Truncate logs larger than MB', type=int, metavar='MB')
    cleanup.add_argument('--compress-after', help='Compress rotated logs older than DAYS', type=int, metavar='DAYS')
    cleanup.add_argument('-j', '--journal', help='Vacuum the systemd journal', action='store_true', default=None)
    cleanup.add_argument('-D', '--docker', help='Truncate large Docker container logs', action='store_true', default=None)
    cleanup.add_argument('-p', '--packages', help='Clean the package cache', action='store_true', default=None)
    cleanup.add_argument('-t', '--temp', help='Remove stale temporary files', action='store_true', default=None)
    cleanup.add_argument(
        '-A', '--all',
        help='Enable journal, Docker, package cache and temp cleanup',
        action='store_true'
    )

    # cert
    cert = subparsers.add_parser('cert', help='Manage Let\'s Encrypt certificates')
    threshold = argparse.ArgumentParser(add_help=False)
    threshold.add_argument(
        '--threshold',
        help='Days before expiry a certificate is due (default: from configuration)',
        type=int,
        metavar='DAYS'
    )
    cert_commands = cert.add_subparsers(dest='cert_command', metavar='ACTION')
    cert_commands.required = True

    cert_commands.add_parser('list', parents=[threshold], help='List installed certificates')
    info = cert_commands.add_parser('info', parents=[threshold], help='Show certificate details')
    info.add_argument('domain', help='Certificate domain')
    cert_commands.add_parser(
        'check', parents=[threshold, dry_run], help='Report expiring and expired certificates'
    )
    renew = cert_commands.add_parser(
        'renew', parents=[threshold, dry_run], help='Renew certificates due for renewal'
    )
    renew.add_argument('--force', help='Renew all certificates', action='store_true')
    cert_commands.add_parser(
        'reload', parents=[dry_run], help='Test configuration and reload web services'
    )
    request = cert_commands.add_parser(
        'request', parents=[dry_run], help='Request a new certificate'
    )
    request.add_argument('domain', help='Primary domain')
    request.add_argument('alt_domains', help='Additional domains', nargs='*')
    request.add_argument('-e', '--email', help='Registration email')
    request.add_argument('-w', '--webroot', help='Webroot for the HTTP challenge')

    args = parser.parse_args(argv)
    args.parser = parser
    return args

def run_job(
    config: Dict[str, Any],
    log_manager: LogManager,
    category: JobCategory,
    dry_run: bool = False,
    **action_args: Any
) -> int:
    """
    Run one maintenance job through the JobRunner.

    Args:
        config: Configuration dictionary
        log_manager: Configured LogManager
        category: Job category
        dry_run: Simulate only
        **action_args: Arguments for the category's action

    Returns:
        Process exit status
    """
    if config.get('JOB_LOG', True):
        job_log = log_manager.add_job_log(category.value)
        if job_log:
            logger.info(f"Job log: {job_log}")

    stale_after = config.get('STALE_LOCK_AFTER', 0)
    options = RunOptions(
        dry_run=dry_run,
        require_elevated_privilege=True,
        auto_release_stale_lock_after=timedelta(seconds=stale_after) if stale_after else None
    )

    try:
        checks = create_preflight_checks(config, category)
        action = create_action(config, category, **action_args)
        outcome = JobRunner(config).run(category, checks, action, options)
    except ValueError as e:
        logger.error(f"Invalid job setup: {e}")
        return EXIT_NOT_RUN
    except JobNotRunError as e:
        logger.error(f"Job not run: {e}")
        return EXIT_NOT_RUN
    except JobInterrupted as e:
        logger.error(f"Job interrupted by signal {e.signum}")
        return 128 + e.signum
    except KeyboardInterrupt:
        logger.error("Job interrupted by user")
        return 130

    if outcome.dry_run:
        print(outcome.summary)
    return EXIT_SUCCESS if outcome.ok else EXIT_FAILED

def check_updates(config: Dict[str, Any], update_type: Optional[str]) -> int:
    """Print pending package updates without taking the job lock."""
    action = PackageUpdateAction(config, update_type)
    refresh = is_root()
    if not refresh:
        logger.info("Not running as root, using cached package lists")
    try:
        pending = action.get_pending_updates(refresh=refresh)
    except ActionError as e:
        logger.error(f"Cannot check for updates: {e}")
        return EXIT_FAILED

    print(pending.describe(limit=pending.total or 1))
    return EXIT_SUCCESS

def list_certificates(config: Dict[str, Any], threshold: Optional[int]) -> int:
    """Print the certificate inventory."""
    inventory = _inventory(config, threshold)
    try:
        certificates = inventory.read_all()
    except (CommandError, ValueError) as e:
        logger.error(f"Cannot read certificates: {e}")
        return EXIT_FAILED

    if not certificates:
        print(f"No certificates found in {inventory.cert_dir}")
        return EXIT_SUCCESS

    print(f"{'DOMAIN':<40} {'STATUS':<10} {'DAYS':>5}  EXPIRES")
    for cert in certificates:
        days = cert.days_until_expiry()
        expires = cert.not_after.strftime('%Y-%m-%d') if cert.not_after else '-'
        print(
            f"{cert.domain:<40} {cert.status(inventory.threshold_days).value:<10} "
            f"{days if days is not None else '-':>5}  {expires}"
        )
    return EXIT_SUCCESS

def show_certificate(config: Dict[str, Any], domain: str, threshold: Optional[int]) -> int:
    """Print details of one certificate."""
    inventory = _inventory(config, threshold)
    try:
        cert = inventory.read(domain)
    except (CommandError, ValueError) as e:
        logger.error(f"Cannot read certificate for {domain}: {e}")
        return EXIT_FAILED

    status = cert.status(inventory.threshold_days)
    if status is CertStatus.MISSING:
        print(f"Certificate not found: {cert.path}")
        return EXIT_FAILED

    print(f"Domain:     {cert.domain}")
    print(f"Path:       {cert.path}")
    print(f"Subject:    {cert.subject}")
    print(f"Issuer:     {cert.issuer}")
    print(f"Valid from: {cert.not_before.isoformat() if cert.not_before else '-'}")
    print(f"Valid to:   {cert.not_after.isoformat()}")
    print(f"Names:      {', '.join(cert.alt_names) or '-'}")
    print(f"Status:     {cert.describe(inventory.threshold_days)}")
    return EXIT_SUCCESS

def _inventory(config: Dict[str, Any], threshold: Optional[int]) -> CertificateInventory:
    return CertificateInventory(
        config.get('CERT_DIR', '/etc/letsencrypt/live'),
        config.get('RENEWAL_THRESHOLD_DAYS', 30) if threshold is None else threshold
    )

def dispatch(args: argparse.Namespace, config: Dict[str, Any], log_manager: LogManager) -> int:
    """Run the selected subcommand."""
    if args.command == 'update':
        if args.check:
            return check_updates(config, args.type)
        return run_job(
            config, log_manager, JobCategory.SYSTEM_UPDATE, args.dry_run,
            update_type=args.type,
            auto_reboot=args.auto_reboot
        )

    if args.command == 'cleanup':
        extras = {
            name: True if args.all else getattr(args, name)
            for name in ('journal', 'docker', 'packages', 'temp')
        }
        return run_job(
            config, log_manager, JobCategory.LOG_CLEANUP, args.dry_run,
            extra_dirs=args.dirs,
            max_age_days=args.max_age,
            max_size_mb=args.max_size,
            compress_after_days=args.compress_after,
            **extras
        )

    if args.command == 'cert':
        if args.cert_command == 'list':
            return list_certificates(config, args.threshold)
        if args.cert_command == 'info':
            return show_certificate(config, args.domain, args.threshold)
        if args.cert_command == 'check':
            return run_job(
                config, log_manager, JobCategory.CERT_AUDIT, args.dry_run,
                threshold_days=args.threshold
            )
        if args.cert_command == 'renew':
            return run_job(
                config, log_manager, JobCategory.CERT_RENEWAL, args.dry_run,
                force=args.force,
                threshold_days=args.threshold
            )
        if args.cert_command == 'reload':
            return run_job(config, log_manager, JobCategory.CERT_RELOAD, args.dry_run)
        if args.cert_command == 'request':
            return run_job(
                config, log_manager, JobCategory.CERT_REQUEST, args.dry_run,
                domain=args.domain,
                extra_domains=args.alt_domains,
                email=args.email,
                webroot=args.webroot
            )

    args.parser.print_help(sys.stderr)
    return EXIT_USAGE

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    if args.version:
        print(f"hostmaint v{__version__}")
        return EXIT_SUCCESS

    if args.generate_config:
        try:
            ConfigurationManager().generate_example_config(args.generate_config)
        except ConfigurationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED
        print(f"Example configuration written to {args.generate_config}")
        return EXIT_SUCCESS

    if not args.command:
        args.parser.print_help(sys.stderr)
        return EXIT_USAGE

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return EXIT_NOT_RUN

    if args.debug:
        config['LOG_LEVEL'] = 'DEBUG'
        config['DEBUG_MODE'] = True

    log_manager = setup_logging(config)
    return dispatch(args, config, log_manager)

if __name__ == "__main__":
    sys.exit(main())
