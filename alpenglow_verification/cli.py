#!/usr/bin/env python3
"""
Command-line entry point: load a configuration, run the verification and
write the JSON report.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import MODES, VerificationConfig
from .engine import verify
from .errors import AlpenglowVerificationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Alpenglow consensus model checker")
    parser.add_argument('--config', type=Path, help='YAML configuration file')
    parser.add_argument('--validators', type=int, help='Validator count (overrides config)')
    parser.add_argument('--mode', choices=MODES, help='Exploration mode (overrides config)')
    parser.add_argument('--seed', type=int, help='Random seed (overrides config)')
    parser.add_argument('--output', '-o', type=Path, help='Write the JSON report to this path')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns 1 when any property is violated"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    overrides = {}
    if args.validators is not None:
        overrides['validator_count'] = args.validators
    if args.mode is not None:
        overrides['mode'] = args.mode
    if args.seed is not None:
        overrides['seed'] = args.seed

    try:
        if args.config is not None:
            config = VerificationConfig.from_yaml(args.config, overrides)
        else:
            config = VerificationConfig.from_dict(overrides)
        report = verify(config)
    except AlpenglowVerificationError as e:
        logger.error(f"Verification failed: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Operation interrupted by user")
        return 130

    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(report.to_json())
        logger.info(f"Report written to {args.output}")
    else:
        print(report.to_json())

    return 1 if report.has_violations else 0


if __name__ == "__main__":
    sys.exit(main())
