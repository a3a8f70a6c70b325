"""Main CLI entrypoint for the converter."""

import sys
from typing import Sequence

from .commands import run_doctor_cmd, run_init_cmd, run_main
from .parsers import build_doctor_parser, build_init_parser, build_run_parser


def main(argv: Sequence[str] | None = None) -> int:
    """Route to a command based on the first argument.

    - 'doctor': run environment checks
    - 'init': initialize project structure
    - anything else: convert the given inputs
    """
    argv = list(argv) if argv is not None else sys.argv[1:]

    if argv and argv[0] == "doctor":
        args = build_doctor_parser().parse_args(argv[1:])
        return run_doctor_cmd(args)

    if argv and argv[0] == "init":
        args = build_init_parser().parse_args(argv[1:])
        return run_init_cmd(args)

    args = build_run_parser().parse_args(argv)
    return run_main(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
