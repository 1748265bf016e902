#!/usr/bin/env python3
"""
rc2 Docker setup
Application entry point
"""

import sys
import argparse
import logging


def run_startup(manager, refresh: bool = False, start: bool = True):
    """Run the startup sequence, printing pull progress"""
    def show_progress(progress):
        print(f"\rDownloading: {progress.percent}%", end='', flush=True)

    if manager.initialize(refresh=refresh):
        manager.pull_images(show_progress)
        print()
    manager.prepare_containers()
    if start:
        from rc2docker.docker_api.containers import ContainerOperation
        manager.perform(ContainerOperation.START)
        manager.wait_until_running()
        manager.wait_until_db_running()


def main(argv=None):
    """Main function"""
    parser = argparse.ArgumentParser(description='rc2 Docker setup')

    parser.add_argument(
        '--refresh',
        action='store_true',
        help='Discard cached version and image information'
    )

    parser.add_argument(
        '--no-start',
        action='store_true',
        help='Prepare containers without starting them'
    )

    parser.add_argument(
        '--backup',
        metavar='PATH',
        help='Back up the database to PATH and exit'
    )

    parser.add_argument(
        '--log-level',
        help='Logging level (default from settings)'
    )

    args = parser.parse_args(argv)

    from rc2docker.settings_manager import SettingsManager
    from rc2docker.docker_manager import DockerManager
    from rc2docker.docker_api.exceptions import DockerException

    settings = SettingsManager()
    level = (args.log_level or settings.get('log_level', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    manager = DockerManager(settings)
    try:
        if args.backup:
            manager.initialize()
            manager.backup_database(args.backup)
            print(f"Database backed up to {args.backup}")
        else:
            run_startup(manager, refresh=args.refresh, start=not args.no_start)
            print('Docker is ready')
    except DockerException as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
