from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import subprocess
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings, validate_provider_settings
from .core.db import create_engine, create_schema
from .core.errors import ConfigurationError
from .ingest.ffprobe_parser import ffprobe_command, parse_ffprobe_json
from .ingest.thumbnails import DEFAULT_OFFSETS_S, ThumbnailError, render_thumbnail

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Video engine developer CLI")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate ffmpeg/ffprobe presence and transcode provider configuration",
    )

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Run ffprobe and print the extracted metadata")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    thumb_parser = subparsers.add_parser("thumb", help="Extract a single thumbnail frame")
    thumb_parser.add_argument("--file", required=True, help="Path to the source media file")
    thumb_parser.add_argument("--out", required=True, help="Where to write the JPEG thumbnail")
    thumb_parser.add_argument(
        "--offset",
        type=float,
        default=DEFAULT_OFFSETS_S[0],
        help="Seek position in seconds (falls back to the first frame).",
    )
    thumb_parser.set_defaults(func=_cmd_thumb)

    init_db_parser = subparsers.add_parser("init-db", help="Create the database schema for the configured DSN")
    init_db_parser.set_defaults(func=_cmd_init_db)
    return parser


def _cmd_probe(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    try:
        proc = subprocess.run(
            ffprobe_command(str(media_path)),
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        console.print(f"[red]ffprobe failed:[/] {exc.stderr.strip()}")
        sys.exit(3)
    metadata = parse_ffprobe_json(json.loads(proc.stdout))
    console.print_json(data={"file": str(media_path), **dataclasses.asdict(metadata)})


def _cmd_thumb(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    output_path = Path(args.out).expanduser().resolve()
    offsets = tuple(dict.fromkeys((args.offset, 0.0)))
    try:
        width, height = render_thumbnail(str(media_path), output_path, offsets)
    except ThumbnailError as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(3)
    console.print(f"[green]Thumbnail written to {output_path}[/] ({width}x{height})")


def _cmd_init_db(args: argparse.Namespace) -> None:
    settings = get_settings()

    async def _run() -> None:
        engine = create_engine(settings)
        try:
            await create_schema(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    console.print(f"[green]Schema ensured for {settings.database_url}[/]")


def _existing_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    checks = {
        "ffmpeg": ["ffmpeg", "-version"],
        "ffprobe": ["ffprobe", "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (OSError, subprocess.CalledProcessError):
            results[label] = False

    settings = get_settings()
    provider_problem: Optional[str] = None
    try:
        validate_provider_settings(settings)
    except ConfigurationError as exc:
        provider_problem = exc.message
    results[f"provider ({settings.transcode_provider})"] = provider_problem is None

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")
    if provider_problem:
        console.print(f"[yellow]{provider_problem}[/]")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Consult pyproject.toml.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
