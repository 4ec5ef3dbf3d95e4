"""Command-line entry point for the offline weather forecast cache."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from urllib.parse import urlsplit

from domain.models import ForecastSettings
from forecast.context import StaticConnectivity, StaticRegionCatalog
from forecast.manager import OfflineForecastManager
from forecast.sizes import calculate_updates_size
from infrastructure.http.client import probe_online
from settings import default_settings_path, load_regions, load_settings, save_settings
from shared.constants import UpdateFrequency
from shared.dispatch import UiDispatcher
from shared.progress import ConsoleProgress

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> Path:
    """Configure application logging to LOCALAPPDATA.

    Returns:
        Path of the log file.
    """
    local_base = (
        Path(os.getenv('LOCALAPPDATA') or Path.home() / 'AppData' / 'Local')
        / 'OfflineForecast'
    )
    log_dir = local_base / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'offline_forecast.log'

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def _format_size(size: int) -> str:
    mb = size / (1024 * 1024)
    return f'{mb:.1f} MB'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Offline weather forecast - download and manage forecast tiles'
    )
    parser.add_argument('--settings', type=Path, help='Settings TOML file')
    parser.add_argument(
        '--regions',
        type=Path,
        help='TOML file with [[regions]] tables (defaults to the settings file)',
    )
    parser.add_argument('--offline', action='store_true', help='Assume no network')
    parser.add_argument('--no-wifi', action='store_true', help='Assume a metered network')
    parser.add_argument(
        '--probe', action='store_true', help='Check the tile server before downloading'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p_download = sub.add_parser('download', help='Download forecasts of regions')
    p_download.add_argument('region_ids', nargs='+')
    p_download.add_argument(
        '--frequency',
        choices=[f.value for f in UpdateFrequency],
        help='Automatic update frequency to remember for the regions',
    )
    p_download.add_argument('--wifi-only', action='store_true')

    p_refresh = sub.add_parser('refresh', help='Re-download regions that are due')
    p_refresh.add_argument('region_ids', nargs='*')

    p_status = sub.add_parser('status', help='Show download state and sizes')
    p_status.add_argument('region_ids', nargs='*')

    p_clear = sub.add_parser('clear', help='Clear stored tiles')
    p_clear.add_argument('region_ids', nargs='*')
    p_clear.add_argument(
        '--remote', action='store_true', help='Clear the online-browsing scope'
    )

    p_remove = sub.add_parser('remove', help='Forget regions and delete their tiles')
    p_remove.add_argument('region_ids', nargs='+')

    p_init = sub.add_parser('init', help='Write the effective settings to the settings file')
    p_init.add_argument('--zoom', type=int, help='Geo tile zoom to store')
    p_init.add_argument('--cache-dir', help='Tile cache directory to store')
    return parser


def _detect_connectivity(args, settings) -> StaticConnectivity:
    online = not args.offline
    if online and args.probe:
        parts = urlsplit(settings.tile_url_template)
        online = asyncio.run(
            probe_online(f'{parts.scheme}://{parts.netloc}/', settings.http_timeout_s)
        )
        logger.info('Tile server reachable: %s', online)
    return StaticConnectivity(online=online, wifi=not args.no_wifi)


def _wait_for_cycles(manager: OfflineForecastManager, ui: UiDispatcher, region_ids) -> None:
    for region_id in region_ids:
        while not manager.wait(region_id, timeout=0.2):
            ui.drain()
    # completion callbacks may still be running on engine threads
    ui.drain(timeout=0.5)


def cmd_download(manager: OfflineForecastManager, ui: UiDispatcher, args) -> int:
    lifecycle = manager.lifecycle
    for region_id in args.region_ids:
        if args.frequency:
            lifecycle.set_frequency(region_id, UpdateFrequency(args.frequency))
        if args.wifi_only:
            lifecycle.set_wifi_only(region_id, True)

    failed = 0
    progress = ConsoleProgress()
    try:
        for region_id in args.region_ids:
            manager.first_init_forecast(region_id)
            if not manager.start_download(region_id, progress) and not lifecycle.is_in_progress(
                region_id
            ):
                logger.error('Download of %s was not started', region_id)
                failed += 1
                continue
            _wait_for_cycles(manager, ui, [region_id])
            progress.close()
            state = lifecycle.get_download_state(region_id)
            logger.info('Region %s: %s', region_id, state.value)
    except KeyboardInterrupt:
        progress.close()
        logger.warning('Interrupted, stopping downloads')
        for region_id in args.region_ids:
            manager.check_and_stop_download(region_id)
        ui.drain(timeout=0.5)
        return 130
    return 1 if failed else 0


def cmd_refresh(manager: OfflineForecastManager, ui: UiDispatcher, args, catalog) -> int:
    region_ids = args.region_ids or catalog.region_ids()
    started = manager.check_and_download_forecasts_by_region_ids(region_ids)
    logger.info('Refreshing %d of %d regions', len(started), len(region_ids))
    _wait_for_cycles(manager, ui, started)
    return 0


def cmd_status(manager: OfflineForecastManager, ui: UiDispatcher, args, catalog) -> int:
    region_ids = args.region_ids or catalog.region_ids()
    lifecycle = manager.lifecycle
    for region_id in region_ids:
        manager.first_init_forecast(region_id)
        manager.recompute_sizes(region_id).result()
        info = manager.info(region_id)
        tile_ids = manager.ctx.tile_ids(region_id) or []
        local_size = info.local_size if info is not None else 0
        print(
            f'{region_id}: state={lifecycle.get_download_state(region_id).value}'
            f' tiles={len(tile_ids)}'
            f' progress={info.progress if info is not None else 0}'
            f'/{manager.get_progress_destination(region_id)}'
            f' local={_format_size(local_size)}'
            f' update={_format_size(calculate_updates_size(len(tile_ids)))}'
            f' outdated={manager.is_forecast_outdated(region_id)}'
        )
    print(f'Offline cache: {_format_size(manager.whole_cache_size(True).result())}')
    print(f'Online cache: {_format_size(manager.whole_cache_size(False).result())}')
    ui.drain()
    return 0


def cmd_clear(manager: OfflineForecastManager, ui: UiDispatcher, args) -> int:
    manager.clear_cache(not args.remote, args.region_ids).result()
    ui.drain()
    return 0


def cmd_remove(manager: OfflineForecastManager, ui: UiDispatcher, args) -> int:
    manager.remove_local_forecast(
        args.region_ids,
        on_data_removed=lambda: logger.info('Forecast data removed'),
    ).result()
    ui.drain()
    return 0


def cmd_init(settings, args) -> int:
    updates = {}
    if args.zoom is not None:
        updates['zoom'] = args.zoom
    if args.cache_dir:
        updates['cache_dir'] = args.cache_dir
    settings = ForecastSettings.model_validate({**settings.model_dump(), **updates})
    path = save_settings(args.settings or default_settings_path(), settings)
    logger.info('Settings written to %s', path)
    return 0


def main(argv=None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger.info('Starting offline forecast: %s', args.command)

    if args.command == 'init':
        try:
            if args.settings is not None and not Path(args.settings).exists():
                settings = ForecastSettings()
            else:
                settings = load_settings(args.settings)
            return cmd_init(settings, args)
        except (OSError, ValueError) as e:
            logger.error(f'Failed to write configuration: {e}')
            return 2

    try:
        settings = load_settings(args.settings)
        regions_path = args.regions or args.settings or default_settings_path()
        regions = load_regions(regions_path) if Path(regions_path).exists() else []
    except (OSError, ValueError) as e:
        logger.error(f'Failed to load configuration: {e}')
        return 2

    catalog = StaticRegionCatalog(regions)
    connectivity = _detect_connectivity(args, settings)
    ui = UiDispatcher()
    manager = OfflineForecastManager(settings, catalog, connectivity, ui=ui)
    try:
        if args.command == 'download':
            return cmd_download(manager, ui, args)
        if args.command == 'refresh':
            return cmd_refresh(manager, ui, args, catalog)
        if args.command == 'status':
            return cmd_status(manager, ui, args, catalog)
        if args.command == 'clear':
            return cmd_clear(manager, ui, args)
        return cmd_remove(manager, ui, args)
    except Exception as e:
        logger.error(f'Command {args.command} failed: {e}', exc_info=True)
        return 1
    finally:
        manager.shutdown()


if __name__ == '__main__':
    sys.exit(main())
