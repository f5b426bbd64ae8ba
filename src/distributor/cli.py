"""
distributor: concatenate a source tree into a single distributable file.

Overview
--------
The tool walks a source directory, orders and filters its entries, pipes
every script (and transpiled TypeScript file) into one output file and hoists
the ``require`` declarations it finds into a deduplicated block at the top.
The result can be wrapped in a module shell (web IIFE, AMD, UMD).

In watch mode the source tree is polled and every change enqueues a new
bundling run; runs never overlap.

Options are read, weakest first, from ``DISTRIBUTOR_*`` environment variables
(or a ``.env`` file), a ``.distrc`` config file and the command line.

Usage
-----
Run `python -m distributor.cli --help` for full options. Common examples:
    - Bundle src/ into dist/dist.js:
        distributor

    - Custom layout, web module named "lib":
        distributor -i lib -o build -n lib.js -M web -N lib

    - Keep bundling while files change:
        distributor --watch --log-file distributor.log
"""

from __future__ import annotations

import argparse
import threading
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from distributor import __version__
from distributor.bundler import bundle
from distributor.config import ModuleType
from distributor.exceptions import ConfigurationError
from distributor.job_queue import JobQueue
from distributor.logging import logger, setup_logging
from distributor.settings import (
    build_config,
    env_log_options,
    find_config_file,
    load_config_file,
    load_env_defaults,
)
from distributor.watch import SourceWatcher, make_change_handler

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from distributor.job_queue import Job
    from distributor.settings import BundleConfig
    from distributor.typescript import Transpiler

# options that are not part of BundleConfig
_NON_BUNDLE_OPTIONS = frozenset({"config", "log_file", "log_level"})


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Bundle options default to ``argparse.SUPPRESS`` so that only flags given
    explicitly override the config file and the environment.
    """
    p = argparse.ArgumentParser(
        prog="distributor",
        description="Pipe a source tree into a single distribution file.",
        argument_default=argparse.SUPPRESS,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-c", "--config", default="auto", help='Config file, "auto" to search the CWD, "none" to skip.')
    p.add_argument("-i", "--input", "--source", dest="source", type=Path, help="Source directory (default: src).")
    p.add_argument("-o", "--out", "--output", dest="output", type=Path, help="Output directory (default: dist).")
    p.add_argument("-n", "--name", help="Output file name (default: dist.js).")
    p.add_argument(
        "-E",
        "--exclude",
        action="append",
        help="Regular expression of entry names to leave out (repeatable).",
    )
    p.add_argument(
        "-I",
        "--ignore",
        action="append",
        help="Regular expression of entry names to ignore (repeatable).",
    )
    p.add_argument(
        "-O",
        "--order",
        action="append",
        help="Entry name in preferred order; later names go later (repeatable).",
    )
    p.add_argument("-S", "--separator", help="Text written before the line feed that follows each file.")
    p.add_argument(
        "-M",
        "--module-type",
        choices=[t.value for t in ModuleType],
        help="Module shell written around the bundle.",
    )
    p.add_argument("-N", "--module-name", help="Name bound by the module shell.")
    p.add_argument("--ts-config", type=Path, help="tsconfig.json to use instead of searching for one.")
    p.add_argument("-s", "--start", action=argparse.BooleanOptionalAction, help="Bundle at launch (default: on).")
    p.add_argument("-w", "--watch", action="store_true", help="Bundle again whenever a source file changes.")
    p.add_argument("--poll-interval", type=float, help="Seconds between two watch polls (default: 0.5).")
    p.add_argument("--log-file", default=None, help="Log file path.")
    p.add_argument("--log-level", default=None, help="Log level (default: INFO).")
    return p


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def cli_options(args: argparse.Namespace) -> dict[str, Any]:
    """Options given explicitly on the command line, keyed by field name."""
    return {k: v for k, v in vars(args).items() if k not in _NON_BUNDLE_OPTIONS}


def file_options(config: str | None, cwd: Path | None = None) -> dict[str, Any]:
    """Load the options of the config file selected with ``--config``.

    Args:
        config (str | None): a path, "auto" to search ``cwd``, or "none"
        cwd (Path | None): where to search from, defaults to the CWD

    Raises:
        ConfigurationError: if the file cannot be parsed

    Returns:
        dict[str, Any]: the file options, empty when there is no file
    """
    if not config or config.lower() == "none":
        return {}
    if config == "auto":
        path = find_config_file(cwd or Path.cwd())
        return load_config_file(path) if path else {}
    return load_config_file(Path(config))


def output_filter(output: Path) -> Callable[[Path], bool]:
    """Return a predicate matching the output file and its prepend temp files."""
    temp_prefix = f".{output.name}."

    def is_output(path: Path) -> bool:
        if path.name.startswith(temp_prefix) and path.name.endswith(".tmp"):
            return True
        try:
            return path.resolve() == output
        except OSError:
            return False

    return is_output


def _log_progress(queue: JobQueue, job: Job | None) -> None:  # noqa: ARG001
    logger.info("%d%% done", round(queue.percentage * 100))


def run(
    config: BundleConfig,
    *,
    transpiler: Transpiler | None = None,
    stop_event: threading.Event | None = None,
) -> int:
    """Bundle once, or keep bundling on changes in watch mode.

    Args:
        config (BundleConfig): validated options
        transpiler (Transpiler | None): TypeScript backend override
        stop_event (threading.Event | None): ends a watch session when set

    Returns:
        int: 0 on success, 1 if a bundling run failed
    """
    job = partial(bundle, config, transpiler=transpiler)
    jobs = JobQueue()
    jobs.on_finished(_log_progress)
    jobs.run_on_new_job()

    if not config.watch:
        if config.start:
            jobs.enqueue(job)
        else:
            logger.warning("Start disabled and not watching, nothing to do")
        jobs.join()
        jobs.shutdown()
        if jobs.failed:
            for failed in jobs.failed_jobs:
                logger.error("Bundling failed: %s", failed.error)
            return 1
        return 0

    jobs.reset_on_done()
    watcher = SourceWatcher(
        config.source,
        make_change_handler(jobs, job),
        interval=config.poll_interval,
        is_ignored=output_filter(config.output),
    )
    if config.start:
        jobs.enqueue(job)
    stop_event = stop_event or threading.Event()
    watcher.start()
    try:
        while not stop_event.wait(config.poll_interval):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping watch")
    finally:
        watcher.stop()
        jobs.shutdown(wait=True)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    env_log_file, env_log_level = env_log_options()
    log_file = args.log_file or env_log_file
    log_level = args.log_level or env_log_level
    if log_file or log_level:
        setup_logging(log_file, log_level)

    try:
        config = build_config(load_env_defaults(), file_options(args.config), cli_options(args))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logger.info("Bundling %s into %s", config.source, config.output)
    return run(config)


if __name__ == "__main__":
    raise SystemExit(main())
