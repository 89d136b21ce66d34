"""Command line host for the AeraField offline cache layer."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from domain.models import CacheRequest
from services.interceptor import create_interceptor
from services.settings_service import load_settings
from shared.constants import APP_NAME, ControlMessageType
from shared.errors import NetworkError

logger = logging.getLogger(__name__)

_CONTROL_COMMANDS = {
    'info': ControlMessageType.GET_CACHE_INFO,
    'clear-all': ControlMessageType.CLEAR_ALL_CACHES,
    'clear-tiles': ControlMessageType.CLEAR_TILES_CACHE,
}


def setup_logging(level: int = logging.INFO) -> Path:
    """Configure application logging to LOCALAPPDATA.

    Returns:
        Directory holding the log file.
    """
    local_base = Path(os.getenv('LOCALAPPDATA') or Path.home() / 'AppData' / 'Local') / APP_NAME
    log_dir = local_base / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'offline_cache.log'

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_dir


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='AeraField offline cache - request routing and cache administration'
    )
    parser.add_argument('--config', help='Path to settings TOML file')
    parser.add_argument('--storage', help='Directory of the SQLite cache storage')
    parser.add_argument('--offline', action='store_true', help='Never touch the network')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('install', help='Pre-warm the application shell cache')
    sub.add_parser('activate', help='Remove caches of previous releases')
    fetch = sub.add_parser('fetch', help='Route one request through the cache')
    fetch.add_argument('url')
    fetch.add_argument('--method', default='GET')
    fetch.add_argument('--navigate', action='store_true', help='Treat as top-level navigation')
    fetch.add_argument('--output', help='Write the response body to this file')
    for name in _CONTROL_COMMANDS:
        sub.add_parser(name, help=f'Send {_CONTROL_COMMANDS[name].value}')
    return parser


async def run_command(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    overrides: dict = {}
    if args.storage:
        overrides['storage_dir'] = args.storage
    if args.offline:
        overrides['offline'] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    async with create_interceptor(settings) as interceptor:
        if args.command == 'install':
            report = await interceptor.install()
            print(json.dumps({'cached': report.cached, 'failed': report.failed}, indent=2))
            return 0 if not report.failed else 1
        if args.command == 'activate':
            await interceptor.install()
            removed = await interceptor.activate()
            print(json.dumps({'removed': removed}, indent=2))
            return 0
        if args.command == 'fetch':
            mode = 'navigate' if args.navigate else 'cors'
            try:
                response = await interceptor.handle_fetch(
                    CacheRequest(args.url, method=args.method, mode=mode)
                )
            except NetworkError as exc:
                logger.error('Request failed: %s', exc)
                return 1
            print(f'{response.status} {response.status_text} ({len(response.body)} bytes)')
            if args.output:
                Path(args.output).write_bytes(response.body)
            return 0
        reply = await interceptor.request(_CONTROL_COMMANDS[args.command])
        print(json.dumps(reply, indent=2, ensure_ascii=False))
        return 0 if reply.get('success') else 1


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info('Starting AeraField offline cache: %s', args.command)
    try:
        return asyncio.run(run_command(args))
    except Exception as e:
        logger.error('Command failed: %s', e, exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
