"""Command-line interface for galibot."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from galibot import __version__
from galibot.bot import EXIT_CONFIG_ERROR, Bot
from galibot.config import Config
from galibot.errors import ConfigError


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Enable debug logging if True
    """
    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    logging.basicConfig(level=level, format=format_str)
    # Request lines from the bridge poll loop drown out state changes
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="galibot",
        description="galibot - messaging bot with persistent device pairing",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--transport-url",
        type=str,
        default=None,
        help="Bridge base URL (overrides config and environment)",
    )

    parser.add_argument(
        "--db-host",
        type=str,
        default=None,
        help="Database host (overrides config and environment)",
    )

    parser.add_argument(
        "--db-port",
        type=int,
        default=None,
        help="Database port (overrides config and environment)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(args)


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration from file, environment and CLI overrides.

    Args:
        args: Parsed command-line arguments

    Returns:
        Configuration object
    """
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Configuration file not found: {config_path}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)
        config = Config.from_yaml(config_path)
    else:
        default_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path.home() / ".config" / "galibot" / "config.yaml",
        ]
        config = None
        for path in default_paths:
            if path.exists():
                config = Config.from_yaml(path)
                break
        if config is None:
            config = Config.default()

    config.apply_environment()

    if args.transport_url:
        config.transport.base_url = args.transport_url
    if args.db_host:
        config.database.host = args.db_host
    if args.db_port:
        config.database.port = args.db_port

    return config


async def run_bot(config: Config) -> int:
    """Run the bot with the given configuration.

    Args:
        config: Bot configuration

    Returns:
        Process exit status
    """
    bot = Bot(config=config)
    return await bot.run()


def main(args: list[str] | None = None) -> None:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv)
    """
    parsed_args = parse_args(args)
    setup_logging(verbose=parsed_args.verbose)

    try:
        config = load_config(parsed_args)
        exit_code = asyncio.run(run_bot(config))
    except ConfigError as e:
        logging.critical(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        print("\nGoodbye!")
        exit_code = 0
    except Exception as e:
        logging.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
