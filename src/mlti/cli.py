"""Command-line argument parsing."""

import argparse
import os
from typing import Any, Optional, Sequence

from . import __version__
from .core.config import ConfigLoader, MltiConfig


def build_parser() -> argparse.ArgumentParser:
    # Flags left unset are absent from the namespace, so only the flags a
    # user actually passed override the config file.
    parser = argparse.ArgumentParser(
        prog="mlti",
        description="Launch some commands concurrently.",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("commands", nargs="*", metavar="COMMAND", help="commands to run")
    parser.add_argument("--config", help="YAML or JSON file with default options")
    parser.add_argument("-n", "--names", help="names of processes")
    parser.add_argument("--name-separator", help="name separator character (default ',')")
    parser.add_argument("-k", "--kill-others", action="store_true",
                        help="kill other processes if one exits")
    parser.add_argument("--kill-others-on-fail", action="store_true",
                        help="kill other processes if one fails to start")
    parser.add_argument("--exit-code-failures", action="store_true",
                        help="with --kill-others-on-fail, also treat a non-zero exit code as a failure")
    parser.add_argument("--kill-signal", help="signal sent to processes on a cascade (default SIGTERM)")
    parser.add_argument("-s", "--success-terms", choices=["all", "first", "last"],
                        help="exit code on completion: first non-zero (all), or that of the first or last process to exit")
    parser.add_argument("--package-json",
                        help="package.json whose scripts npm:/pnpm:/yarn: patterns expand against")
    parser.add_argument("--hide", help="comma separated names or indexes of processes to hide")
    parser.add_argument("--restart-tries", type=int,
                        help="how many times a process will attempt to restart")
    parser.add_argument("--restart-after", type=int,
                        help="delay in milliseconds between restart attempts")
    parser.add_argument("-p", "--prefix", help="prefix template used in logging for each process")
    parser.add_argument("-l", "--prefix-length", type=int,
                        help="max number of characters of prefix that are shown")
    parser.add_argument("-t", "--timestamp-format", help="strftime format for {time} and --timings")
    parser.add_argument("-m", "--max-processes",
                        help="how many processes should run at once, a number or a CPU percentage")
    parser.add_argument("-r", "--raw", action="store_true", help="print raw output of processes only")
    parser.add_argument("--no-color", action="store_true", help="disable color output")
    parser.add_argument("-g", "--group", action="store_true",
                        help="group outputs together as if processes were run sequentially")
    parser.add_argument("--timings", action="store_true", help="prefix every line with a timestamp")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_config(
    argv: Optional[Sequence[str]] = None,
    loader: Optional[ConfigLoader] = None,
) -> MltiConfig:
    """
    Build the run config from the command line.

    A config file (--config, or $MLTI_CONFIG) supplies defaults; flags given
    on the command line override it.
    """
    loader = loader or ConfigLoader()
    args: dict[str, Any] = vars(build_parser().parse_args(argv))

    config_path = args.pop("config", None) or os.getenv("MLTI_CONFIG")
    base = loader.load_file(config_path) if config_path else MltiConfig()

    # Keep the file's commands unless some were given on the command line
    if not args.get("commands"):
        args.pop("commands", None)

    return loader.merge(base, args)
