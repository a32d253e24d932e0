from __future__ import annotations

import argparse
import subprocess
import sys
from importlib import metadata
from pathlib import Path

from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

import tomllib

from .config import ConverterConfig, ConverterOptions, debug_output_enabled, load_config
from .diagnostics import console, debug_log, error, info, set_debug_logging, warn
from .publishers import ConverterModule, find_module, load_modules


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("converty")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


class GitError(RuntimeError):
    """Raised when a git command of the compare run fails."""


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"converty {__version__}",
    )


def _add_common_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "inputs",
        nargs="*",
        help="EPUB files (or extracted EPUB directories). Defaults to everything in the input directory.",
    )
    ap.add_argument(
        "--config",
        help="Path to a converterrc.json (default: ./converterrc.json)",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Print verbose processing traces.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Normalize light novel EPUBs into a uniform layout. Use `converty compare` to diff runs.",
    )
    _add_version_flag(ap)
    _add_common_arguments(ap)
    ap.add_argument(
        "-o",
        "--output-dir",
        help="Directory for the converted files (default: <base>/output)",
    )
    ap.add_argument(
        "--debug-output",
        action="store_true",
        help="Write pretty-printed, uncompressed directories instead of .epub files.",
    )
    return ap


def build_compare_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="converty compare",
        description="Convert in debug output mode into <base>/compare and commit the result to git.",
    )
    _add_version_flag(ap)
    _add_common_arguments(ap)
    return ap


def _collect_inputs(inputs: list[str], config: ConverterConfig) -> list[Path]:
    if inputs:
        return [Path(item).expanduser() for item in inputs]
    config.ensure_dirs()
    found = sorted(
        path
        for path in config.input_dir.iterdir()
        if path.is_dir() or path.suffix.lower() == ".epub"
    )
    if not found:
        info(f"No inputs found in {config.input_dir}")
    return found


def convert_inputs(
    inputs: list[Path],
    output_dir: Path,
    *,
    debug_output: bool,
    modules: list[ConverterModule] | None = None,
    show_progress: bool = True,
) -> int:
    """Run every input through its publisher module; returns the number of failures."""
    if modules is None:
        modules = load_modules()
    output_dir.mkdir(parents=True, exist_ok=True)
    failures = 0

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not show_progress,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Converting", total=len(inputs))
        for input_path in inputs:
            progress.update(task_id, description=input_path.name)
            module = find_module(modules, input_path.name)
            if module is None:
                warn(f'No module found for "{input_path.name}"')
                progress.advance(task_id)
                continue
            debug_log(f'Processing "{input_path.name}" with module "{module.name}"')
            options = ConverterOptions(
                input_path=input_path,
                output_path=output_dir,
                debug_output=debug_output,
            )
            try:
                result = module.process(options)
            except Exception as exc:
                failures += 1
                error(f'Module "{module.name}" failed for "{input_path.name}": {type(exc).__name__}: {exc}')
            else:
                info(f"Wrote {result}")
            progress.advance(task_id)
    return failures


def _run_convert(args: argparse.Namespace) -> int:
    config = load_config(Path(args.config) if args.config else None)
    inputs = _collect_inputs(args.inputs, config)
    output_dir = Path(args.output_dir).expanduser() if args.output_dir else config.output_dir
    debug_output = args.debug_output or debug_output_enabled()
    failures = convert_inputs(inputs, output_dir, debug_output=debug_output)
    return 1 if failures else 0


def _git(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)


def _require_git(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    result = _git(args, cwd)
    if result.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {(result.stderr or result.stdout).strip()}")
    return result


def _source_revision() -> str:
    result = _git(["rev-parse", "HEAD"], Path.cwd())
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    return __version__


def _run_compare(args: argparse.Namespace) -> int:
    config = load_config(Path(args.config) if args.config else None)
    compare_dir = config.compare_dir
    compare_dir.mkdir(parents=True, exist_ok=True)
    _require_git(["--version"], compare_dir)

    if _git(["rev-parse", "HEAD"], compare_dir).returncode == 0:
        # park leftover changes so the commit only holds this run
        _require_git(["add", "-A"], compare_dir)
        _git(["stash", "push"], compare_dir)
    else:
        _require_git(["init"], compare_dir)

    inputs = _collect_inputs(args.inputs, config)
    failures = convert_inputs(inputs, compare_dir, debug_output=True)

    _require_git(["add", "-A"], compare_dir)
    commit = _git(["commit", "-m", f"Generated on {_source_revision()}"], compare_dir)
    if commit.returncode != 0:
        if "nothing to commit" in commit.stdout:
            info("Compare output did not change")
        else:
            raise GitError(f"git commit failed: {(commit.stderr or commit.stdout).strip()}")
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "compare":
        compare_args = build_compare_parser().parse_args(argv[1:])
        set_debug_logging(compare_args.debug)
        return _run_compare(compare_args)

    args = build_parser().parse_args(argv)
    set_debug_logging(args.debug)
    return _run_convert(args)


if __name__ == "__main__":
    raise SystemExit(main())
