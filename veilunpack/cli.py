"""CLI interface for veilunpack."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from veilunpack import __version__
from veilunpack.config import Config
from veilunpack.core import AssemblyInfo, AssemblyResolver, DecompressionError, ManifestError
from veilunpack.module import ModuleFormatError, load_module

console = Console()

# Debug logger
debug_logger = None
debug_log_file = None

_HARD_ERRORS = (DecompressionError, ManifestError, ModuleFormatError, OSError)


def setup_debug_logger(log_path: Optional[Path] = None) -> logging.Logger:
    """Setup debug logger for detailed logging."""
    global debug_logger, debug_log_file

    if log_path is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(f"veilunpack_debug_{timestamp}.log")

    debug_log_file = log_path

    logger = logging.getLogger("veilunpack")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    # File handler
    fh = logging.FileHandler(log_path, encoding='utf-8')
    fh.setLevel(logging.DEBUG)

    # Detailed format
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    debug_logger = logger
    return logger


def debug_log(level: str, message: str, data: dict = None):
    """Log debug message with optional structured data."""
    global debug_logger
    if debug_logger is None:
        return

    log_func = getattr(debug_logger, level.lower(), debug_logger.info)

    if data:
        data_str = json.dumps(data, ensure_ascii=False, indent=2)
        log_func(f"{message}\n{data_str}")
    else:
        log_func(message)


def collect_input_files(input_path: Path, patterns: list[str]) -> list[Path]:
    """Expand a directory into the files matching ``patterns``."""
    if input_path.is_file():
        return [input_path]

    found = set()
    for pattern in patterns:
        found.update(p for p in input_path.rglob(pattern) if p.is_file())
    return sorted(found)


def default_output_dir(input_file: Path, config: Config) -> Path:
    if config.output_dir is not None:
        return config.output_dir / input_file.stem
    return input_file.parent / f"{input_file.stem}_bundle"


def _unique_path(directory: Path, file_name: str, overwrite: bool) -> Path:
    """Return a path in ``directory`` that does not clobber an existing file."""
    target = directory / file_name
    if overwrite or not target.exists():
        return target

    stem, suffix = target.stem, target.suffix
    counter = 1
    while True:
        candidate = directory / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


def write_assemblies(infos: list[AssemblyInfo], output_dir: Path, overwrite: bool = False) -> list[Path]:
    """Write each recovered module to ``output_dir/<simple name><extension>``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for info in infos:
        target = _unique_path(output_dir, info.file_name, overwrite)
        target.write_bytes(info.data)
        written.append(target)
    return written


def _describe_type(type_def) -> dict:
    return {"token": f"0x{type_def.token:08X}", "name": type_def.full_name}


def process_file(
    input_file: Path,
    config: Config,
    output_dir: Optional[Path] = None,
    write_output: bool = False,
) -> dict:
    """Detect and optionally extract the bundle of one file.

    Returns a stats dict; hard failures are recorded under ``error``.
    """
    stats = {
        "file": str(input_file),
        "detected": False,
        "can_remove_types": False,
        "bundle_types": [],
        "assemblies": [],
        "warnings": [],
        "written": [],
    }
    resolver = None
    try:
        module = load_module(input_file)
        resolver = AssemblyResolver(module, config=config)
        resolver.initialize()
    except _HARD_ERRORS as e:
        stats["error"] = f"{type(e).__name__}: {e}"
        debug_log("error", f"Processing {input_file} failed", {"error": stats["error"]})

    if resolver is not None:
        stats["detected"] = resolver.detected
        stats["can_remove_types"] = resolver.can_remove_types
        stats["bundle_types"] = [_describe_type(t) for t in resolver.bundle_types]
        stats["assemblies"] = [
            {"full_name": info.full_name, "file_name": info.file_name, "size": len(info.data)}
            for info in resolver.assembly_infos
        ]
        stats["warnings"] = [event.to_dict() for event in resolver.diagnostics]

        if write_output and resolver.assembly_infos:
            target_dir = output_dir or default_output_dir(input_file, config)
            try:
                written = write_assemblies(resolver.assembly_infos, target_dir, config.overwrite_existing)
            except OSError as e:
                stats["error"] = f"{type(e).__name__}: {e}"
                debug_log("error", f"Writing modules of {input_file} failed", {"error": stats["error"]})
            else:
                stats["written"] = [str(p) for p in written]

    debug_log("info", f"Processed {input_file}", stats)
    return stats


def _print_file_details(stats: dict) -> None:
    console.print(f"\n[blue]File:[/blue] {stats['file']}")
    if "error" in stats:
        console.print(f"[red]Error: {stats['error']}[/red]")
    if not stats["detected"]:
        if "error" not in stats:
            console.print("[dim]No module bundle found[/dim]")
        return

    console.print(f"[green]Module bundle found[/green] (removable types: {stats['can_remove_types']})")
    if stats["bundle_types"]:
        table = Table(title="Bundle Types")
        table.add_column("Role")
        table.add_column("Token")
        table.add_column("Type")
        roles = ["controller", "manager", "stream provider iface", "xml parser", "entry", "stream provider"]
        for role, item in zip(roles, stats["bundle_types"]):
            table.add_row(role, item["token"], item["name"])
        console.print(table)

    for warning in stats["warnings"]:
        console.print(f"[yellow]Warning: {warning['message']}[/yellow]")

    if stats["assemblies"]:
        table = Table(title="Bundled Assemblies")
        table.add_column("Assembly")
        table.add_column("File")
        table.add_column("Size", justify="right")
        for item in stats["assemblies"]:
            table.add_row(item["full_name"], item["file_name"], str(item["size"]))
        console.print(table)

    for path in stats["written"]:
        console.print(f"[green]Wrote {path}[/green]")


def _print_summary(results: list[dict]) -> None:
    table = Table(title="Processing Summary")
    table.add_column("File")
    table.add_column("Bundle")
    table.add_column("Assemblies")
    table.add_column("Status")

    for r in results:
        status = "✓" if "error" not in r else "✗"
        table.add_row(
            r.get("file", "unknown"),
            "yes" if r.get("detected") else "no",
            str(len(r.get("assemblies", []))),
            status,
        )

    console.print(table)


def run(
    input_path: Path,
    config: Config,
    output_path: Optional[Path] = None,
    write_output: bool = False,
) -> list[dict]:
    files = collect_input_files(input_path, config.input_patterns)
    if not files:
        console.print(f"[yellow]No input files found in {input_path}[/yellow]")
        return []

    single = len(files) == 1
    results = []
    for input_file in tqdm(files, desc="Scanning", unit="file", disable=single):
        out_dir = output_path
        if out_dir is not None and not single:
            out_dir = out_dir / input_file.stem
        results.append(process_file(input_file, config, out_dir, write_output))

    for stats in results:
        if single or stats["detected"] or "error" in stats:
            _print_file_details(stats)
    if not single:
        _print_summary(results)
    return results


def _start_debug(debug: bool, debug_file: Optional[Path], data: dict) -> None:
    if not debug:
        return
    setup_debug_logger(debug_file)
    console.print(f"[yellow]Debug logging enabled: {debug_log_file}[/yellow]")
    debug_log("info", "Debug logging started", data)


@click.group()
@click.version_option(version=__version__)
def main():
    """Veilunpack - find and extract modules bundled inside .NET assemblies."""
    pass


@main.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option("--debug", is_flag=True, help="Enable debug logging to file")
@click.option("--debug-file", type=click.Path(path_type=Path), help="Debug log file path (default: veilunpack_debug_TIMESTAMP.log)")
def detect(input_path: Path, debug: bool, debug_file: Optional[Path]):
    """Report whether INPUT_PATH contains a module bundle.

    INPUT_PATH can be a .NET module or a directory of modules.
    """
    _start_debug(debug, debug_file, {"command": "detect", "input_path": str(input_path)})
    results = run(input_path, Config())
    if any("error" in r for r in results):
        raise SystemExit(1)


@main.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", "output_path", type=click.Path(path_type=Path), help="Output directory")
@click.option("--report", "report_path", type=click.Path(path_type=Path), help="Write a JSON report to this file")
@click.option("--overwrite", is_flag=True, help="Overwrite existing output files")
@click.option("--debug", is_flag=True, help="Enable debug logging to file")
@click.option("--debug-file", type=click.Path(path_type=Path), help="Debug log file path (default: veilunpack_debug_TIMESTAMP.log)")
def extract(
    input_path: Path,
    output_path: Optional[Path],
    report_path: Optional[Path],
    overwrite: bool,
    debug: bool,
    debug_file: Optional[Path],
):
    """Extract the modules bundled in INPUT_PATH.

    Each recovered module is written as <name><extension>, by default into
    <input stem>_bundle next to the input file.
    """
    _start_debug(debug, debug_file, {
        "command": "extract",
        "input_path": str(input_path),
        "output_path": str(output_path) if output_path else None,
    })

    # Only override .env values if CLI args are explicitly provided
    config_kwargs = {}
    if overwrite:
        config_kwargs["overwrite_existing"] = True
    config = Config(**config_kwargs)

    results = run(input_path, config, output_path, write_output=True)

    if report_path:
        report_path.write_text(json.dumps(results, ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"[blue]Report written to {report_path}[/blue]")

    if debug:
        console.print(f"\n[yellow]Debug log saved to: {debug_log_file}[/yellow]")

    if any("error" in r for r in results):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
