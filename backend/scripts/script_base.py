#!/usr/bin/env python3
"""
Script Base - shared setup for the maintenance scripts in this directory

Puts backend/ on sys.path, logs to stdout and scripts/log/<name>.log, and
offers the options every playback maintenance job understands:

    --dry-run     report what would change, write nothing
    --debug       DEBUG level logging
    --limit N     process at most N playbacks
    --threshold   minimum match score (0-100) to accept a catalog match

A script builds a ScriptBase, adds the options it needs, and hands its
main() to run_script(), which turns the boolean result into an exit code.
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Callable, Dict, Optional

# backend/ modules (config, db_utils, ...) are imported as top-level modules
sys.path.insert(0, str(Path(__file__).parent.parent))

RULE = "=" * 80


def threshold_type(value: str) -> int:
    """argparse type for a match score between 0 and 100"""
    try:
        threshold = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"threshold must be an integer, got {value!r}")
    if not 0 <= threshold <= 100:
        raise argparse.ArgumentTypeError(f"threshold must be between 0 and 100, got {threshold}")
    return threshold


class ScriptBase:
    """Logging, option parsing and report formatting for one script run"""

    def __init__(self, name: str, description: str, epilog: str = "",
                 log_dir: Optional[Path] = None):
        self.name = name
        self.log_dir = log_dir or Path(__file__).parent / 'log'
        self.logger = self._setup_logging()
        self.parser = argparse.ArgumentParser(
            prog=f"{name}.py",
            description=description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=epilog
        )

    def _setup_logging(self) -> logging.Logger:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout),
                logging.FileHandler(self.log_dir / f'{self.name}.log')
            ]
        )
        return logging.getLogger(self.name)

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def add_dry_run_arg(self):
        self.parser.add_argument('--dry-run', action='store_true',
                                 help='Report matches without saving them')

    def add_debug_arg(self):
        self.parser.add_argument('--debug', action='store_true',
                                 help='Enable debug logging')

    def add_limit_arg(self, default: int = 100):
        self.parser.add_argument('--limit', type=int, default=default,
                                 help=f'Maximum number of playbacks to process (default: {default})')

    def add_threshold_arg(self, default: Optional[int] = None):
        if default is None:
            import config
            default = config.DEFAULT_MATCH_THRESHOLD
        self.parser.add_argument('--threshold', type=threshold_type, default=default,
                                 help=f'Minimum catalog match score, 0-100 (default: {default})')

    def parse_args(self, args=None) -> argparse.Namespace:
        """Parse options; --debug lowers the root log level"""
        parsed = self.parser.parse_args(args)
        if getattr(parsed, 'debug', False):
            logging.getLogger().setLevel(logging.DEBUG)
            self.logger.debug("Debug logging enabled")
        return parsed

    # -------------------------------------------------------------------------
    # Report
    # -------------------------------------------------------------------------

    def _banner(self, title: str):
        self.logger.info(RULE)
        self.logger.info(title)
        self.logger.info(RULE)

    def print_header(self, modes: Optional[Dict[str, bool]] = None):
        """Banner with the script name and every active mode, e.g. {"DRY RUN": True}"""
        self._banner(self.name.replace('_', ' ').title())
        for mode_name, is_active in (modes or {}).items():
            if is_active:
                self.logger.info(f"*** {mode_name} MODE ***")
        self.logger.info("")

    def print_summary(self, stats: Dict[str, int]):
        """One aligned line per counter, e.g. 'Still Broken    3'"""
        self.logger.info("")
        self._banner("SUMMARY")
        width = max((len(key) for key in stats), default=0) + 5
        for key, value in stats.items():
            self.logger.info(f"{key.replace('_', ' ').title():<{width}} {value}")
        self.logger.info(RULE)


def run_script(main_func: Callable[[], bool]):
    """Run main_func and exit 0 if it returned True, 1 otherwise"""
    try:
        success = main_func()
    except KeyboardInterrupt:
        print("\nCancelled by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(0 if success else 1)
