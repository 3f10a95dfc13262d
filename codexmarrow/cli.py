"""Command-line interfaces for ROI incorporation runs."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

import pandas as pd

from codexmarrow.core.dataset import read_dataset
from codexmarrow.pipeline.io import atomic_write_csv, ensure_dir
from codexmarrow.plotting.styles import apply_plot_style
from codexmarrow.plotting.utils import sanitize_label


def incorporate_main(argv: Iterable[str] | None = None) -> int:
    """Run the configured incorporation passes.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success, 2 when some regions failed).
    """
    parser = argparse.ArgumentParser(description="Incorporate ROI objects as synthetic cells")
    parser.add_argument("--config", required=True, help="Path to JSON pipeline config")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from codexmarrow.pipeline.stages import run_incorporation_pipeline

    summary = run_incorporation_pipeline(args.config)
    for p in summary["passes"]:
        print(f"label={p['label']} added={p['n_added']} failed_regions={len(p['failures'])}")
    print(f"output={summary['output']}")
    return 0 if not summary["warnings"] else 2


def validate_main(argv: Iterable[str] | None = None) -> int:
    """Count a label per region and draw overlays for an existing .h5ad.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 when every region carries the label, 1 otherwise).
    """
    parser = argparse.ArgumentParser(description="Validate incorporated ROI objects")
    parser.add_argument("--h5ad", required=True, help="Path to incorporated .h5ad file")
    parser.add_argument("--label", required=True, help="Annotation label to check")
    parser.add_argument("--key", default="annotation", help="obs column holding the label")
    parser.add_argument("--outdir", default=".", help="Output directory root")
    parser.add_argument("--flip-origin", type=float, default=0.0, help="y flip origin")
    parser.add_argument("--no-plots", action="store_true", help="Skip overlay figures")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from codexmarrow.validation import plot_region_overlay

    dataset = read_dataset(args.h5ad)
    outdir = ensure_dir(Path(args.outdir))
    rows = []
    for aid, region in dataset.regions.items():
        n = 0
        if args.key in region.obs.columns:
            n = int((region.obs[args.key].astype("object") == args.label).sum())
        rows.append({"acquisition_id": aid, "n_cells": int(region.n_obs), "n_label": n})

    table = pd.DataFrame(rows)
    atomic_write_csv(outdir / "tables" / f"label_counts_{sanitize_label(args.label)}.csv", table)

    if not args.no_plots:
        apply_plot_style()
        for aid, region in dataset.regions.items():
            plot_region_overlay(
                region,
                key=args.key,
                label=args.label,
                outpath=outdir / "plots" / sanitize_label(args.label) / f"{sanitize_label(aid)}.png",
                title=f"{aid}: {args.label}",
                flip_origin=args.flip_origin,
            )

    missing = table.loc[table["n_label"] == 0, "acquisition_id"].tolist()
    print(f"label={args.label} total={int(table['n_label'].sum())} regions_without_label={len(missing)}")
    return 0 if not missing else 1


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="codexmarrow CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("incorporate", help="Incorporate ROI objects from a JSON config")
    sub.add_parser("validate", help="Check label presence and draw overlays")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "incorporate":
        return incorporate_main(remainder)
    if args.command == "validate":
        return validate_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
