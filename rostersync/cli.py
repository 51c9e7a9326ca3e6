import argparse
import os
import sys
from typing import List
from typing import Optional

from rostersync.config import Config
from rostersync.exceptions import ConfigError
from rostersync.exceptions import CredentialError
from rostersync.exceptions import RosterSyncError
from rostersync.exceptions import SyncError
from rostersync.sync import Destination
from rostersync.sync import Source
from rostersync.sync import sync
from rostersync.utils.logger import get_logger
from rostersync.utils.sentry import init_sentry


def _default(name: str, fallback: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name) or os.environ.get(f"INPUT_{name.upper()}") or fallback


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rostersync',
        description=(
            "rostersync reconciles the users assigned to each SSO application of a directory into "
            "per-application workspaces of an identity governance platform."
        ),
    )
    subparsers = parser.add_subparsers(dest='subcommand')

    sync_parser = subparsers.add_parser('sync', help='Sync application rosters from a source into a destination.')
    sync_parser.add_argument(
        '--source',
        default=_default('source', Source.AZUREAD.value),
        help=f"Where the rosters come from. One of: {', '.join(s.value for s in Source)}.",
    )
    sync_parser.add_argument(
        '--destination',
        default=_default('destination', Destination.ADMINA.value),
        help=f"Where the rosters are written. One of: {', '.join(d.value for d in Destination)}.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
        # a CI action passes the sub-command as an input instead of an argument
        subcommand = _default('subcommand')
        if not argv and subcommand:
            argv = [subcommand]

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.subcommand != 'sync':
        parser.print_help()
        return 1

    log = get_logger((_default('log_level') or 'INFO').upper())
    init_sentry()

    try:
        config = Config.from_env()
    except ConfigError as e:
        log.error(f"Invalid configuration: {e}")
        return 1

    log.setLevel(config.log_level)

    try:
        sync(args.source, args.destination, config)
    except ConfigError as e:
        log.error(f"Invalid configuration: {e}")
        return 1
    except CredentialError as e:
        log.error(f"Failed to authenticate against the directory: {e}")
        return 1
    except SyncError as e:
        log.error(str(e))
        return 1
    except RosterSyncError as e:
        log.exception(f"Sync aborted: {e}")
        return 1

    log.info("Sync finished.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
