#!/usr/bin/env python3
"""
Siteflow Command Line
======================

Run a site pipeline task.

Usage:
    siteflow [TASK] [options]
    python scripts/run.py build --production

Tasks:
    clean, lint, build, serve, compile, start, deploy
    (and any single step, e.g. style or upload)

Examples:
    # Production build
    siteflow build --production

    # Development server on the default port
    siteflow serve --open

    # Build, then preview dist on port 3000
    siteflow start --port 3000

    # Publish dist to another branch, with a JSON report
    siteflow deploy --branch pages --report logs/deploy.json

    # Show the task trees
    siteflow --tasks

    # CI build with JSON log lines
    siteflow build --production --log-json

Exit codes:
    0 success, 1 task failure, 2 configuration or composition error,
    130 interrupted
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from siteflow import __version__
from siteflow.utils.logging import get_logger, setup_logging
from siteflow.utils.exceptions import ConfigurationError, OrchestrationError
from siteflow.orchestration import create_executor
from siteflow.pipeline import ENTRY_POINTS, create_pipeline, load_settings

logger = get_logger(__name__)

EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="siteflow",
        description="Static site build pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "task",
        nargs="?",
        default=None,
        help="Task to run (default: build)",
    )

    # Configuration
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "--root",
        type=str,
        default=None,
        help="Project directory (default: current directory)",
    )

    # Build options
    parser.add_argument(
        "--production", "--prod",
        action="store_true",
        help="Production build",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for serving dist (default: 2080)",
    )

    parser.add_argument(
        "--open",
        action="store_true",
        help="Open a browser when a server starts",
    )

    parser.add_argument(
        "--branch",
        type=str,
        default=None,
        help="Branch to deploy to (default: gh-pages)",
    )

    # Execution
    parser.add_argument(
        "--backend",
        type=str,
        choices=["thread", "asyncio"],
        default=None,
        help="Executor backend (default: thread)",
    )

    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Maximum atomic steps running at once (default: unbounded)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds each atomic step may take (default: no limit)",
    )

    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Skip unstarted parallel steps once one fails",
    )

    # Output
    parser.add_argument(
        "--tasks", "-T",
        action="store_true",
        help="Print the task trees and exit",
    )

    parser.add_argument(
        "--report",
        type=str,
        default=None,
        help="Write the execution report as JSON to this path",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )

    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Log JSON lines (for CI and log aggregation)",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"siteflow {__version__}",
    )

    return parser.parse_args(argv)


def print_tasks(registry, task: Optional[str] = None) -> None:
    """Print the task tree of one task, or of every entry point."""
    names = [task] if task else [n for n in ENTRY_POINTS if n in registry]
    for name in names:
        print(registry.tree(name))
        print()


def write_report(report, path: str) -> None:
    """Save the execution report as JSON."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        json.dump(report.to_dict(), f, indent=2, default=str)
    logger.info(f"Report saved to: {output}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(
        level="DEBUG" if args.verbose else "INFO",
        log_file=args.log_file,
        json_format=args.log_json,
        include_timestamp=args.verbose,
    )

    try:
        settings = load_settings(
            args.config,
            root=args.root,
            production=True if args.production else None,
            server__port=args.port,
            server__open=True if args.open else None,
            deploy__branch=args.branch,
            executor__backend=args.backend,
            executor__max_workers=args.max_workers,
            executor__timeout=args.timeout,
            executor__fail_fast=True if args.fail_fast else None,
        )
        executor = create_executor(settings.executor)
        registry = create_pipeline(settings, executor=executor)

        if args.tasks:
            print_tasks(registry, args.task)
            return 0

        task_name = args.task or "build"
        registry.validate(task_name)
        logger.info(
            f"Running '{task_name}'"
            f"{' (production)' if settings.production else ''}"
        )
        report = executor.run(task_name, registry=registry)

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return EXIT_INTERRUPTED

    except (ConfigurationError, OrchestrationError) as e:
        logger.error(str(e))
        return EXIT_USAGE

    if args.report:
        write_report(report, args.report)

    if not report.is_success:
        for name, message in report.failure_chain():
            logger.debug(f"  {name}: {message}")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
