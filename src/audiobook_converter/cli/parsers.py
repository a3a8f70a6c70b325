"""Argument parser builders for the converter CLI."""

import argparse
from pathlib import Path

from .. import __version__
from ..config import OUTPUT_FORMATS

PROG = "epub-audiobook-converter"


def build_run_parser() -> argparse.ArgumentParser:
    """Build argument parser for the main run command."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Convert EPUB books into audiobooks with local speech engines.",
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        type=Path,
        help="EPUB files or folders to process (default: the configured epubs folder)",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        help="Output format (overrides [output].format)",
    )
    parser.add_argument(
        "--quality",
        type=float,
        help="Encoder quality between 0 and 1 (overrides [output].quality)",
    )
    parser.add_argument(
        "--speed",
        type=float,
        help="Speech rate multiplier (overrides [tts].speed)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Parallel synthesis workers, 0 for one per CPU (overrides [tts].workers)",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the audio cache for this run",
    )
    parser.add_argument("--version", action="version", version=f"{PROG} {__version__}")
    return parser


def build_doctor_parser() -> argparse.ArgumentParser:
    """Build argument parser for the doctor command."""
    parser = argparse.ArgumentParser(
        prog=f"{PROG} doctor",
        description="Check speech engines, encoders and host resources",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--text",
        type=str,
        default="Hello world.",
        help="Text to synthesize for the smoke test",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory to keep the encode test output in",
    )
    parser.add_argument(
        "--smoke-test",
        action="store_true",
        help="Synthesize a short sentence with the active engine",
    )
    parser.add_argument(
        "--encode-test",
        action="store_true",
        help="Encode a short silence with the configured output format",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Run all verification checks",
    )
    return parser


def build_init_parser() -> argparse.ArgumentParser:
    """Build argument parser for the init command."""
    parser = argparse.ArgumentParser(
        prog=f"{PROG} init",
        description="Create the project folders and a default config.toml",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing config.toml if it exists",
    )
    parser.add_argument(
        "--no-config",
        action="store_true",
        help="Skip creating config.toml file",
    )
    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.toml (optional)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Override log level (e.g. INFO, DEBUG)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Debug logging for console and log files",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging on the console only",
    )
