#!/usr/bin/env python3
import argparse
import os
import signal
import sys
import threading
from typing import Optional

real_script_path = os.path.realpath(__file__)
project_root = os.path.abspath(os.path.join(os.path.dirname(real_script_path), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from config.app_config import AppConfig, set_config
from core.dependency_container import cleanup_container, initialize_container
from core.exceptions import ConfigurationError, VPNManagerError
from core.logging_config import get_logger, setup_structured_logging
from service.units import bytes_to_human

logger = get_logger(__name__)

def load_config(env_file: Optional[str]) -> AppConfig:
    config = AppConfig.from_env(env_file)
    config.validate()
    set_config(config)
    setup_structured_logging(config.monitoring.log_level, config.monitoring.log_format)
    return config

def serve_command(args: argparse.Namespace) -> int:
    """Run the VPN daemon, traffic enforcement, the REST API and the bot until signalled."""
    from api.app import APIServer, create_app

    config = load_config(args.env_file)
    container = initialize_container(config)
    stop_event = threading.Event()
    vpn_service = container.get('vpn_service')
    api_server = None

    try:
        container.get('certificate_manager').initialize()
        # The API port is bound before ocserv starts.
        api_server = APIServer(create_app(config.api.secret_key or config.jwt.secret), config.api)
        vpn_service.start(stop_event)
        api_server.start()

        if config.telegram.enabled and not args.no_bot:
            from bot.telegram_bot import TelegramBot

            bot = TelegramBot(
                config.telegram.token,
                container.get('auth_service'),
                container.get('invite_service'),
                vpn_service,
                container.get('user_service'),
                container.get('monitor_service'),
            )
            # Polling installs its own SIGINT/SIGTERM handlers and returns on shutdown.
            bot.run()
        else:
            def _handle_signal(signum, frame):
                logger.info("Shutdown signal received", signal=signum)
                stop_event.set()

            signal.signal(signal.SIGINT, _handle_signal)
            signal.signal(signal.SIGTERM, _handle_signal)
            logger.info("Panel running without Telegram bot")
            stop_event.wait()
    finally:
        stop_event.set()
        if api_server is not None:
            api_server.stop()
        vpn_service.stop()
        cleanup_container()
        logger.info("Panel stopped")
    return 0

def init_db_command(args: argparse.Namespace) -> int:
    config = load_config(args.env_file)
    container = initialize_container(config)
    try:
        container.get('database')
        container.get('certificate_manager').initialize()
    finally:
        cleanup_container()
    print(f"✅ Database initialized at {config.database.path}")
    print(f"✅ Certificates ready in {config.vpn.cert_directory}")
    return 0

def create_route_command(args: argparse.Namespace) -> int:
    config = load_config(args.env_file)
    container = initialize_container(config)
    try:
        route = container.get('vpn_service').create_route(args.network, args.type, args.description)
    finally:
        cleanup_container()
    print(f"✅ Route #{route['id']} {route['network']} ({route['type']}) created")
    return 0

def status_command(args: argparse.Namespace) -> int:
    config = load_config(args.env_file)
    container = initialize_container(config)
    try:
        monitor = container.get('monitor_service')
        status = monitor.get_status()
    finally:
        cleanup_container()

    print("--- Panel Status ---")
    print(f"Total users: {status['total_users']}")
    print(f"Total traffic: {bytes_to_human(status['total_traffic'])}")
    for day in status['daily_traffic']:
        print(f"  {day['day']}: {bytes_to_human(day['bytes'])}")
    system = status['system']
    print(f"CPU: {system['cpu_percent']}%  Memory: {system['memory_percent']}%")
    return 0

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ocpanel", description="OpenConnect VPN control panel")
    parser.add_argument("--env-file", help="Path to the .env file (default: OCPANEL_ENV_FILE)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the VPN server, API and Telegram bot")
    serve.add_argument("--no-bot", action="store_true", help="Do not start the Telegram bot")
    serve.set_defaults(func=serve_command)

    init_db = subparsers.add_parser("init-db", help="Create the database schema and certificates")
    init_db.set_defaults(func=init_db_command)

    create_route = subparsers.add_parser("create-route", help="Add a route record")
    create_route.add_argument("network", help="Network in CIDR notation")
    create_route.add_argument("--type", default="default",
                              choices=["default", "custom", "asn", "blocked"])
    create_route.add_argument("--description", default="")
    create_route.set_defaults(func=create_route_command)

    status = subparsers.add_parser("status", help="Show stored usage statistics")
    status.set_defaults(func=status_command)
    return parser

def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        sys.exit(args.func(args))
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(2)
    except VPNManagerError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ System error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)

if __name__ == "__main__":
    main()
