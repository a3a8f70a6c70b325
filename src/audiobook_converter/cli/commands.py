"""Command runners for the converter CLI."""

import argparse
from dataclasses import replace
from pathlib import Path

from ..config import Config, LoggingConfig, apply_overrides, load_config, write_default_config
from ..doctor import DoctorOptions, run_doctor
from ..logging_setup import configure_console_logging, initialize_logging
from ..pipeline import resolve_inputs, run_pipeline
from ..utils import ensure_dir, generate_run_id
from .progress import ProgressDisplay
from .rendering import exit_code_for, render_result_lines

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def run_main(args: argparse.Namespace) -> int:
    """Convert the given inputs; 0 when every book succeeded, 1 otherwise."""
    config = _load(args)
    if config is None:
        return EXIT_CONFIG
    try:
        config = apply_overrides(
            config,
            output_format=args.output_format,
            quality=args.quality,
            speed=args.speed,
            workers=args.workers,
            cache_enabled=False if args.no_cache else None,
        )
    except ValueError as exc:
        print(f"Invalid option: {exc}")
        return EXIT_CONFIG

    ensure_dir(config.paths.epubs)
    ensure_dir(config.paths.out)
    ensure_dir(config.paths.cache)

    run_id = generate_run_id()
    log_ctx = initialize_logging(config, run_id)
    logger = log_ctx.logger
    progress = ProgressDisplay()

    try:
        input_paths = args.inputs if args.inputs else [config.paths.epubs]
        inputs = resolve_inputs(input_paths)
        logger.debug("Resolved %d input path(s)", len(inputs))

        results = run_pipeline(log_ctx, inputs, config, progress=progress.for_book)
        if not results:
            progress.print("No inputs found. Place EPUB files in the 'epubs/' folder.")
            return EXIT_OK

        progress.print_summary(results)
        for line in render_result_lines(results):
            print(line)
        return exit_code_for(results)
    finally:
        log_ctx.close()


def run_doctor_cmd(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return EXIT_CONFIG
    configure_console_logging(config.logging.console_level)

    options = DoctorOptions(
        smoke_test=args.smoke_test,
        encode_test=args.encode_test,
        verify=args.verify,
        text=args.text,
        output_dir=args.output_dir,
    )
    return run_doctor(config, options)


def run_init_cmd(args: argparse.Namespace) -> int:
    """Create the project folders and a default config.toml."""
    cwd = Path.cwd()
    folders = {
        "epubs": cwd / "epubs",
        "out": cwd / "out",
        "cache": cwd / "cache",
        "logs": cwd / "logs",
    }

    created_folders = []
    for name, path in folders.items():
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            created_folders.append(name)
        else:
            print(f"  {name}/ already exists")

    for name in created_folders:
        print(f"  Created {name}/")

    config_path = cwd / "config.toml"
    if args.no_config:
        print("  Skipping config.toml creation (--no-config)")
    elif config_path.exists() and not args.force:
        print("  config.toml already exists (use --force to overwrite)")
    else:
        existed = config_path.exists()
        write_default_config(config_path)
        print("  Overwrote config.toml" if existed else "  Created config.toml")

    print("\nProject initialized. Place EPUB files in the 'epubs/' folder.")
    return EXIT_OK


def _load(args: argparse.Namespace) -> Config | None:
    try:
        config = load_config(args.config, cwd=Path.cwd())
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        print(str(exc))
        return None

    # Priority: --debug > --verbose > --log-level
    if args.debug:
        return override_log_level(config, "DEBUG")
    if args.verbose:
        return override_console_level(config, "DEBUG")
    if args.log_level:
        return override_log_level(config, args.log_level)
    return config


def override_log_level(config: Config, level: str) -> Config:
    logging_cfg = LoggingConfig(level=level.upper(), console_level=level.upper())
    return replace(config, logging=logging_cfg)


def override_console_level(config: Config, level: str) -> Config:
    """Override only the console log level; the file level is unchanged."""
    return replace(config, logging=replace(config.logging, console_level=level.upper()))
