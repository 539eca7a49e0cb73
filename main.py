#!/usr/bin/env python3
"""Wake-on-LAN Relay - Main Entry Point

Receives Wake-on-LAN magic packets on UDP port 9 and, when they come from
outside the local networks, rebroadcasts them on every local subnet.
"""

import asyncio
import argparse
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

try:
    import sdnotify
except ImportError:
    sdnotify = None

from wol_relay import __version__
from wol_relay.config_manager import ConfigManager
from wol_relay.daemon import RunMode, daemonize, remove_pid_file
from wol_relay.relay_engine import RelayError
from wol_relay.relay_manager import RelayManager


BANNER = f"WoL Relay {__version__}"


def setup_logging(config: dict, run_mode: RunMode = RunMode.FOREGROUND) -> None:
    """Set up logging configuration."""
    log_config = config.get("logging", {})
    log_level = getattr(logging, log_config.get("level", "INFO").upper())
    log_file = log_config.get("file", "")
    max_size_mb = log_config.get("max_size_mb", 10)
    backup_count = log_config.get("backup_count", 3)
    console_output = log_config.get("console_output", True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if run_mode == RunMode.DAEMON:
        facility = logging.handlers.SysLogHandler.facility_names[log_config.get("syslog_facility", "user")]
        syslog_handler = logging.handlers.SysLogHandler(
            address=log_config.get("syslog_address", "/dev/log"),
            facility=facility
        )
        syslog_handler.ident = "wolrelay: "
        syslog_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(syslog_handler)
    elif console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if not log_file:
        return

    # File handler with rotation
    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"Logging configured - Level: {log_config.get('level', 'INFO')}, File: {log_file}")

    except OSError as e:
        logging.warning(f"Could not set up file logging: {e}")


def report_fatal(error: Exception, run_mode: RunMode) -> None:
    """Report a fatal error on stderr, or to syslog when detached."""
    if run_mode == RunMode.DAEMON:
        logging.error(str(error))
    else:
        print(str(error), file=sys.stderr)


def notify_systemd(state: str) -> None:
    if sdnotify is None:
        return
    sdnotify.SystemdNotifier().notify(state)


async def status_server(port: int, relay_manager_ref=None):
    """Start a simple HTTP status server for monitoring."""
    from aiohttp import web, web_runner

    async def get_status(request):
        """Get relay status as JSON."""
        if relay_manager_ref and relay_manager_ref.is_running:
            return web.json_response({
                "status": "running",
                "relay": relay_manager_ref.get_status()
            })
        else:
            return web.json_response({
                "status": "stopped",
                "message": "Relay is not running"
            }, status=503)

    async def health_check(request):
        """Simple health check endpoint."""
        return web.json_response({"status": "healthy"})

    app = web.Application()
    app.router.add_get('/status', get_status)
    app.router.add_get('/health', health_check)
    app.router.add_get('/', get_status)

    runner = web_runner.AppRunner(app)
    await runner.setup()

    site = web_runner.TCPSite(runner, '0.0.0.0', port)
    await site.start()

    logging.info(f"Status server started on port {port}")
    return runner


async def main_service(config: dict, run_mode: RunMode) -> int:
    """Main service function."""
    relay_manager = RelayManager(config, run_mode)

    try:
        if not await relay_manager.initialize():
            logging.info("WoL Relay stopped before startup completed")
            return 0
    except RelayError as e:
        report_fatal(e, run_mode)
        return 1

    status_runner = None
    if config["monitoring"]["health_check_enabled"]:
        try:
            status_runner = await status_server(config["monitoring"]["status_endpoint_port"], relay_manager)
        except Exception as e:
            logging.warning(f"Failed to start status server: {e}")

    notify_systemd("READY=1")

    try:
        await relay_manager.run_forever()
    except RelayError as e:
        report_fatal(e, run_mode)
        return 1
    finally:
        notify_systemd("STOPPING=1")
        if status_runner:
            await status_runner.cleanup()

    logging.info("WoL Relay stopped")
    return 0


def create_example_config(path: str) -> None:
    """Create an example configuration file."""
    config_manager = ConfigManager()
    config_manager.save_example_config(path)
    print(f"Example configuration saved to: {path}")


def validate_config(path: str) -> int:
    """Validate configuration file."""
    try:
        config_manager = ConfigManager(path)
        config_manager.load_config()
    except Exception as e:
        print(f"Configuration validation failed: {e}", file=sys.stderr)
        return 1

    print(f"Configuration file {path} is valid")

    excluded = config_manager.get('interfaces.exclude', [])
    status_enabled = config_manager.get('monitoring.health_check_enabled', False)
    print("\nConfiguration Summary:")
    print(f"  Listening: {config_manager.get('relay.listen_address')}:{config_manager.get('relay.listen_port')}")
    print(f"  Forward Port: {config_manager.get('relay.forward_port')}")
    print(f"  Max Interfaces: {config_manager.get('interfaces.max_interfaces')}")
    if excluded:
        print(f"  Excluded Interfaces: {', '.join(excluded)}")
    print(f"  Status Endpoint: {'Enabled' if status_enabled else 'Disabled'}")
    return 0


def show_status(config_path: str) -> int:
    """Show current relay status."""
    try:
        import requests

        config_manager = ConfigManager(config_path)
        config_manager.load_config()

        if not config_manager.get("monitoring.health_check_enabled", False):
            print("Status endpoint is disabled in configuration")
            return 0

        port = config_manager.get("monitoring.status_endpoint_port")
        url = f"http://localhost:{port}/status"

        response = requests.get(url, timeout=5)
        status_data = response.json()

        print("WoL Relay Status:")
        print(f"  Status: {status_data['status']}")

        if 'relay' in status_data:
            relay = status_data['relay']
            print(f"  Relay State: {relay['relay_state']}")
            print(f"  Run Mode: {relay['run_mode']}")
            for interface in relay['interfaces']:
                print(f"  Interface {interface['name']}: {interface['address']} "
                      f"netmask {interface['netmask']} broadcast {interface['broadcast']}")

            stats = relay['statistics']
            print(f"  Magic Packets: {stats['magic_packets']}")
            print(f"  Forwarded: {stats['packets_forwarded']}")
            print(f"  Suppressed (local): {stats['packets_suppressed']}")
            print(f"  Send Failures: {stats['send_failures']}")
        return 0

    except Exception as e:
        print(f"Failed to get status: {e}")
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Wake-on-LAN Relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                    # Run in the foreground
  %(prog)s -d /run/wolrelay.pid               # Run as daemon
  %(prog)s --config /etc/wolrelay.json        # Run with custom config
  %(prog)s --create-config                    # Create example config
  %(prog)s --validate-config                  # Validate current config
  %(prog)s --status                           # Show current status
        """
    )

    parser.add_argument(
        '--config', '-c',
        default='config.json',
        help='Configuration file path (default: config.json)'
    )

    parser.add_argument(
        '--daemon', '-d',
        metavar='PIDFILE',
        dest='pid_file',
        help='Run as daemon, writing the process id to PIDFILE'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Create an example configuration file'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate the configuration file'
    )

    parser.add_argument(
        '--status',
        action='store_true',
        help='Show current relay status'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=BANNER
    )

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point with command line argument handling."""
    args = build_parser().parse_args(argv)

    if args.create_config:
        create_example_config(args.config + '.example')
        return 0

    if args.validate_config:
        return validate_config(args.config)

    if args.status:
        return show_status(args.config)

    run_mode = RunMode.DAEMON if args.pid_file else RunMode.FOREGROUND
    # Daemon mode changes directory to /
    pid_file = os.path.abspath(args.pid_file) if args.pid_file else None

    try:
        config = ConfigManager(os.path.abspath(args.config)).load_config()
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, run_mode)

    if run_mode == RunMode.DAEMON:
        try:
            daemonize(pid_file)
        except RelayError as e:
            report_fatal(e, run_mode)
            return 1
        logging.info(f"Running as daemon: {BANNER}")
    else:
        print(f"\n{BANNER}\n")

    try:
        return asyncio.run(main_service(config, run_mode))
    except KeyboardInterrupt:
        return 0
    finally:
        if run_mode == RunMode.DAEMON:
            remove_pid_file(pid_file)


if __name__ == '__main__':
    sys.exit(main())
