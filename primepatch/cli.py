"""Command line entry point: `python -m primepatch INPUT OUTPUT --config CONFIG`."""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .core.container import read_container, write_container
from .errors import PatcherError
from .patching.config import load_config

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="primepatch",
        description="Apply a patch configuration to a disc image and write the patched copy.",
    )
    parser.add_argument("input", help="source disc image (left untouched)")
    parser.add_argument("output", help="where to write the patched disc image")
    parser.add_argument("--config", required=True, help="JSON patch configuration")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="overrides the config's log_level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
        patcher = config.build_patcher()
    except (OSError, ValueError, ImportError, AttributeError) as e:
        logging.basicConfig(level=logging.ERROR, format="%(levelname)s: %(message)s")
        log.error("cannot load config %s: %s", args.config, e)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level or config.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        container = read_container(args.input)
        state = patcher.run(container)
        write_container(container, args.output)
    except (PatcherError, OSError) as e:
        log.error("%s", e)
        return 1
    log.info("[%s] %d transforms applied", state.build_version, len(state.applied))
    return 0
