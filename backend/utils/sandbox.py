"""Per-project file area with input, output and thumbnails directories."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

SANDBOX_ROOT = os.getenv("SANDBOX_ROOT", "./projects")

INPUT_DIR = "input"
OUTPUT_DIR = "output"
THUMBNAILS_DIR = "thumbnails"


def sandbox_root(root: str | Path | None = None) -> Path:
    return Path(root or SANDBOX_ROOT).expanduser().resolve()


def project_dir(project_id: str, root: str | Path | None = None) -> Path:
    if not project_id or "/" in project_id or "\\" in project_id or project_id in {".", ".."}:
        raise ValueError(f"Invalid project id: {project_id!r}")
    return sandbox_root(root) / project_id


def input_dir(project_id: str, root: str | Path | None = None) -> Path:
    return project_dir(project_id, root) / INPUT_DIR


def output_dir(project_id: str, root: str | Path | None = None) -> Path:
    return project_dir(project_id, root) / OUTPUT_DIR


def thumbnails_dir(project_id: str, root: str | Path | None = None) -> Path:
    return project_dir(project_id, root) / THUMBNAILS_DIR


def ensure_sandbox(project_id: str, root: str | Path | None = None) -> Path:
    base = project_dir(project_id, root)
    for name in (INPUT_DIR, OUTPUT_DIR, THUMBNAILS_DIR):
        (base / name).mkdir(parents=True, exist_ok=True)
    return base


def delete_sandbox(project_id: str, root: str | Path | None = None) -> bool:
    base = project_dir(project_id, root)
    if not base.exists():
        return False
    shutil.rmtree(base)
    logger.info("Deleted sandbox for project %s", project_id)
    return True


def store_input_file(
    project_id: str,
    source: bytes | str | Path,
    file_id: str,
    filename: str,
    root: str | Path | None = None,
) -> Path:
    """Copy (or write) media into ``input/<file_id>.<ext>`` and return the path."""
    ensure_sandbox(project_id, root)
    ext = Path(filename).suffix.lower() or ".mp4"
    target = input_dir(project_id, root) / f"{file_id}{ext}"
    if isinstance(source, (bytes, bytearray)):
        target.write_bytes(source)
    else:
        shutil.copyfile(source, target)
    return target


def list_sandbox_files(project_id: str, root: str | Path | None = None) -> dict[str, list[str]]:
    listing: dict[str, list[str]] = {INPUT_DIR: [], OUTPUT_DIR: []}
    for area in (INPUT_DIR, OUTPUT_DIR):
        directory = project_dir(project_id, root) / area
        if not directory.is_dir():
            continue
        listing[area] = sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.is_file() and not entry.name.startswith(".")
        )
    return listing


def format_sandbox_listing(listing: dict[str, list[str]]) -> str:
    inputs = listing.get(INPUT_DIR) or []
    outputs = listing.get(OUTPUT_DIR) or []
    input_lines = "\n".join(f"- input/{name}" for name in inputs) or "(none)"
    output_lines = "\n".join(f"- output/{name}" for name in outputs) or "(none)"
    return f"Input files:\n{input_lines}\n\nOutput files:\n{output_lines}"
