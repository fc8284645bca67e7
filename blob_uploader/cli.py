"""Command line interface for blob_uploader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import httpx
from rich.logging import RichHandler

from .cli_progress import (
    UploadProgressDisplay,
    _human_size,
    render_configuration_summary,
    render_uploaded_table,
)
from .exceptions import ListingError
from .models import FileSource, SessionStatus, UploadConfig
from .services import sources as source_factory

# searched in order when --env-file is not given
ENV_FILE_CANDIDATES = (Path(".env"), Path.home() / ".config" / "blob-up" / "env")

# libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "PIL")


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _requested_log_level(debug: bool, log_level: Optional[str]) -> Optional[int]:
    """Level asked for by flags or LOG_LEVEL; None means stay silent."""
    if debug:
        return logging.DEBUG
    name = log_level or os.getenv("LOG_LEVEL")
    if not name:
        return None
    return getattr(logging, name.upper(), logging.INFO)


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Route blob_uploader logs through rich.

    Silent unless --debug, --log-level or LOG_LEVEL asks for output;
    --silent wins over all of them. Returns the effective mode for the
    configuration summary.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    logging.disable(logging.NOTSET)

    level = None if silent else _requested_log_level(debug, log_level)
    if level is None:
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    handler = RichHandler(rich_tracebacks=True, markup=False, show_time=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _normalize_prefix(prefix: Optional[str]) -> Optional[str]:
    if prefix is None:
        return None
    value = prefix.strip()
    if value in {"", "/"}:
        return None
    return value.strip("/")


def _parse_env(content: str) -> Iterator[Tuple[str, str]]:
    """Yield KEY=VALUE pairs; comments, blank lines and `export ` prefixes are allowed."""
    for number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            logging.getLogger(__name__).debug(f"[env] Skipping line {number}: not KEY=VALUE")
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        yield key, value


def _load_env_file(path: Path, override: bool = False) -> Dict[str, str]:
    """Export the file's variables. Existing ones are kept unless override. Returns what was set."""
    if not path.is_file():
        reason = "not found" if not path.exists() else "is not a file"
        raise CLIError(f"env file {reason}: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    applied = {}
    for key, value in _parse_env(content):
        if override or key not in os.environ:
            os.environ[key] = value
            applied[key] = value
    return applied


def _resolve_default_env_file() -> Optional[Path]:
    return next((path for path in ENV_FILE_CANDIDATES if path.is_file()), None)

async def _collect_sources(targets: Sequence[str]) -> List[FileSource]:
    """Turn CLI targets (files, folders, http(s) URLs) into FileSources."""
    collected: List[FileSource] = []
    for target in targets:
        if source_factory.is_url(target):
            try:
                collected.append(await source_factory.from_url(target))
            except httpx.HTTPError as exc:
                raise CLIError(f"could not download {target}: {exc}") from exc
            continue

        path = Path(target).expanduser()
        if path.is_file():
            collected.append(source_factory.from_path(path))
        elif path.is_dir():
            collected.extend(
                source_factory.from_path(child)
                for child in sorted(path.iterdir())
                if child.is_file() and not child.name.startswith(".")
            )
        else:
            raise CLIError(f"source does not exist: {path}")
    return collected


async def _run_upload(
    targets: Sequence[str],
    config: UploadConfig,
    base_url: str,
    token: Optional[str],
) -> int:
    from .orchestrator import UploadOrchestrator
    from .services.storage import HTTPBlobStorageClient

    file_sources = await _collect_sources(targets)

    storage = HTTPBlobStorageClient(base_url, token=token)
    async with UploadOrchestrator(storage, config=config, owns_storage=True) as orchestrator:
        try:
            await orchestrator.refresh()
        except ListingError as exc:
            print(f"WARNING: {exc}", file=sys.stderr)

        if not file_sources:
            render_uploaded_table(orchestrator.get_state().uploaded)
            return 0

        total = sum(source.size for source in file_sources)
        print(f"Uploading {len(file_sources)} file(s), {_human_size(total)}...")

        display = UploadProgressDisplay()
        orchestrator.on_session_update(display.on_session_update)
        with display:
            orchestrator.submit(file_sources)
            state = await orchestrator.wait()

        render_uploaded_table(state.uploaded)
        failed = [s for s in state.sessions if s.status == SessionStatus.FAILED]
        return 1 if failed else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blob-up",
        description="Upload files or URLs to blob storage and list uploaded objects.",
    )
    parser.add_argument("sources", nargs="*", help="Files, folders or http(s) URLs to upload")
    parser.add_argument(
        "-p",
        "--prefix",
        default=None,
        help="Key prefix in the bucket (default from BLOB_UPLOADER_PREFIX or 'uploads')",
    )
    parser.add_argument(
        "-j",
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum simultaneous transfers (default from BLOB_UPLOADER_MAX_PARALLEL or 3)",
    )
    parser.add_argument(
        "--list",
        dest="list_only",
        action="store_true",
        help="Print the objects already under the prefix and exit",
    )
    parser.add_argument(
        "--plain-keys",
        action="store_true",
        help="Key objects by file name only (same-named files overwrite each other)",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Blob storage API URL (default from BLOB_STORAGE_URL)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="blob-up (from blob_uploader)",
    )
    return parser


def _build_config(args: argparse.Namespace) -> UploadConfig:
    overrides = {}
    prefix = _normalize_prefix(args.prefix)
    if prefix is not None:
        overrides["prefix"] = prefix
    if args.max_parallel is not None:
        if args.max_parallel < 1:
            raise CLIError("--max-parallel must be at least 1")
        overrides["max_parallel"] = args.max_parallel
    if args.plain_keys:
        overrides["unique_keys"] = False
    try:
        return UploadConfig.from_env(**overrides)
    except ValueError as exc:
        raise CLIError(f"invalid configuration: {exc}") from exc


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.list_only and args.sources:
        print("ERROR: --list cannot be combined with sources", file=sys.stderr)
        return 1

    used_env_file = args.env_file or _resolve_default_env_file()
    env_vars: Dict[str, str] = {}
    if used_env_file is not None:
        try:
            env_vars = _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    base_url = args.base_url or os.getenv("BLOB_STORAGE_URL")
    if not base_url:
        print("ERROR: BLOB_STORAGE_URL environment variable is not set", file=sys.stderr)
        return 1

    try:
        config = _build_config(args)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    token = os.getenv("BLOB_STORAGE_TOKEN")
    render_configuration_summary(
        {
            "Sources": ", ".join(args.sources) if args.sources else "(list only)",
            "Storage API": base_url,
            "Prefix": config.prefix or "(root)",
            "Max Parallel": config.max_parallel,
            "Unique Keys": "yes" if config.unique_keys else "no",
            "Identity": "bearer token" if token else "(anonymous)",
            "Env File": f"{used_env_file} ({len(env_vars)} set)" if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                targets=args.sources,
                config=config,
                base_url=base_url,
                token=token,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
