"""Command line entry point for flattening log archives."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import toml
from pydantic import ValidationError

from .config import LogFlattenConfig
from .config_loader import ConfigLoader
from .errors import LogFlattenError
from .extractor import LogFlattener
from .logging import setup_logging


def progress_callback(logger: logging.Logger, current: int, total: int, name: str) -> None:
    """Log flattening progress.
    
    Args:
        logger: Logger instance
        current: Current archive number (1-based)
        total: Total number of archives
        name: Name of current archive
    """
    if current > total:
        logger.debug(f"Flattening complete: {total} archive(s) processed")
    else:
        percent = (current / total) * 100 if total > 0 else 0
        logger.debug(f"Flattening archive {current}/{total} ({percent:.1f}%): {name}")


def flatten_command(
    config: LogFlattenConfig,
    source_dir_override: Optional[Path] = None
) -> int:
    """Flatten every archive in the configured source directory.
    
    Args:
        config: Configuration object
        source_dir_override: Optional override for source directory
    
    Returns:
        Exit code (0 for success)
    """
    logger = logging.getLogger(__package__ or __name__)
    
    source_dir = source_dir_override if source_dir_override else Path(config.flatten.source_dir)
    
    try:
        flattener = LogFlattener(
            source_dir=source_dir,
            output_suffix=config.flatten.output_suffix,
            copy_chunk_size=config.flatten.copy_chunk_size
        )
        flattener.run(
            progress_callback=lambda c, t, n: progress_callback(logger, c, t, n)
        )
    except (FileNotFoundError, NotADirectoryError) as e:
        logger.error(str(e))
        return 1
    except LogFlattenError as e:
        logger.error(
            f"Aborting: {e.describe()}",
            exc_info=logger.isEnabledFor(logging.DEBUG)
        )
        return 1
    except Exception as e:
        logger.exception(f"Flattening failed: {e}")
        return 1
    
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the loghub-flatten command."""
    parser = argparse.ArgumentParser(
        description="Flatten .tar.gz and .zip log archives into <name>_logs.txt files"
    )
    parser.add_argument(
        "--source-dir",
        type=Path,
        required=False,
        help="Directory containing the archives (overrides config, default: current directory)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML config file"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides config)"
    )
    
    args = parser.parse_args(argv)
    
    try:
        config = ConfigLoader().load(defaults_path=args.config)
    except (FileNotFoundError, toml.TomlDecodeError, ValidationError) as e:
        setup_logging()
        logging.getLogger(__package__ or __name__).error(f"Invalid configuration: {e}")
        return 1
    
    if args.log_level:
        config.logging.level = args.log_level
    
    log_file = Path(config.logging.file) if config.logging.file else None
    setup_logging(
        level=config.logging.level,
        format=config.logging.format,
        log_file=log_file,
        max_file_size_mb=config.logging.max_file_size_mb,
        backup_count=config.logging.backup_count,
    )
    
    return flatten_command(
        config=config,
        source_dir_override=args.source_dir
    )


if __name__ == "__main__":
    sys.exit(main())
