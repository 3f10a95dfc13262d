"""Pipeline I/O, logging, and run-log helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def atomic_write_csv(path: str | Path, df: pd.DataFrame) -> Path:
    """Safely write a CSV by replacing a temporary file."""
    out = Path(path)
    ensure_dir(out.parent)
    tmp = out.with_suffix(out.suffix + ".tmp")
    df.to_csv(tmp, index=False)
    tmp.replace(out)
    return out


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def write_runlog(outdir: Path, summary: dict[str, Any], warnings: list[str]) -> Path:
    lines = [
        "# ROI Incorporation Run Log",
        "",
        f"- timestamp_utc: {now_utc_iso()}",
        f"- status: {summary.get('status', 'unknown')}",
        f"- input: {summary.get('input')}",
        f"- output: {summary.get('output')}",
        f"- n_cells_before: {summary.get('n_cells_before')}",
        f"- n_cells_after: {summary.get('n_cells_after')}",
        "",
        "## Passes",
        "",
    ]
    for p in summary.get("passes", []):
        lines.append(
            f"- {p['story']} -> {p['label']}: added={p['n_added']} failed_regions={len(p['failures'])}"
        )
    lines.extend(["", "## Warnings"])
    if warnings:
        lines.extend(f"- {w}" for w in warnings)
    else:
        lines.append("- none")

    runlog_path = outdir / "logs" / "runlog.md"
    runlog_path.parent.mkdir(parents=True, exist_ok=True)
    runlog_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return runlog_path
