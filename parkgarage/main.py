# File: parkgarage/main.py
"""
Main application entry point for the Parking Garage
Loads settings, configures logging, wires the service and runs the console.
"""

from typing import List, Optional
import argparse
import logging
import os
import sys

from .infrastructure.config import ConfigurationError, GarageSettings, load_settings
from .infrastructure.factories import GarageServiceFactory
from .presentation.console import ConsoleShell


def setup_logging(settings: GarageSettings) -> logging.Logger:
    """Setup application logging: a log file (when a directory is set) plus stderr"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    log_dir = settings.logging.directory
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(log_dir, 'parkgarage.log')))

    logging.basicConfig(
        level=getattr(logging, settings.logging.level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    return logging.getLogger("parkgarage")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parkgarage", description="Parking garage manager")
    parser.add_argument("-c", "--config", help="path to a YAML configuration file")
    parser.add_argument("--demo", action="store_true", help="seed demo spots and one parked car")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="override the configured log level"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
        updates = {}
        if args.demo:
            updates["seed_demo"] = True
        if args.log_level:
            updates["logging"] = settings.logging.model_copy(update={"level": args.log_level})
        if updates:
            settings = settings.model_copy(update=updates)
    except ConfigurationError as e:
        sys.stderr.write(f"Configuration error: {e}\n")
        return 2

    logger = setup_logging(settings)
    logger.info("Starting parking garage manager...")

    service = GarageServiceFactory.create_service(settings)
    processor = GarageServiceFactory.create_command_processor(service)
    try:
        ConsoleShell(service, processor).run()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        if service.message_bus is not None:
            service.message_bus.close()

    logger.info("Parking garage manager stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
