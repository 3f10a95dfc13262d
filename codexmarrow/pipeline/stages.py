"""Explicit pipeline of pure dataset stages and the config-driven run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from matplotlib.image import imread

from codexmarrow._version import __version__
from codexmarrow.config import PipelineConfig, load_pipeline_config
from codexmarrow.core.annotations import (
    AnnotationSource,
    TableAnnotationSource,
    build_candidates,
    candidates_frame,
    load_annotations,
)
from codexmarrow.core.dataset import SpatialDataset, read_dataset, write_dataset
from codexmarrow.core.labels import LabelMapping
from codexmarrow.core.metadata import (
    DirectoryMetadataSink,
    MetadataColumn,
    MetadataSink,
    build_metadata_column,
)
from codexmarrow.core.types import IncorporationConfig, IncorporationReport
from codexmarrow.pipeline.incorporate import incorporate_objects
from codexmarrow.pipeline.io import (
    atomic_write_csv,
    now_utc_iso,
    setup_logger,
    write_json,
    write_runlog,
)
from codexmarrow.plotting.styles import apply_plot_style, plot_style_dict
from codexmarrow.plotting.utils import sanitize_label
from codexmarrow.validation import (
    assert_label_presence,
    check_label_presence,
    plot_region_overlay,
)

LOGGER = logging.getLogger("codexmarrow")

StageFunc = Callable[[SpatialDataset], tuple[SpatialDataset, dict[str, Any]]]


@dataclass(frozen=True)
class Stage:
    name: str
    func: StageFunc


@dataclass(frozen=True)
class StageRecord:
    name: str
    before: SpatialDataset
    after: SpatialDataset
    info: dict[str, Any]


def run_stages(
    dataset: SpatialDataset,
    stages: Sequence[Stage],
    logger: logging.Logger | None = None,
) -> tuple[SpatialDataset, list[StageRecord]]:
    """Thread a dataset through `stages` in order, keeping every snapshot."""
    log = logger or LOGGER
    records: list[StageRecord] = []
    current = dataset
    for stage in stages:
        log.info("Stage start: %s (n_cells=%d)", stage.name, current.n_cells)
        nxt, info = stage.func(current)
        records.append(StageRecord(stage.name, current, nxt, info))
        log.info("Stage done: %s (n_cells=%d)", stage.name, nxt.n_cells)
        current = nxt
    return current, records


def make_incorporation_stage(
    source: AnnotationSource,
    config: IncorporationConfig,
    *,
    n_jobs: int = 1,
    backend: str = "loky",
    fail_on_region_error: bool = False,
    logger: logging.Logger | None = None,
) -> Stage:
    """Loader -> centroid reducer -> region merger for one ROI story."""

    def _run(dataset: SpatialDataset) -> tuple[SpatialDataset, dict[str, Any]]:
        annotations = load_annotations(source, config.story)
        candidates = build_candidates(annotations, config, logger=logger)
        result = incorporate_objects(
            dataset,
            candidates,
            config,
            n_jobs=n_jobs,
            backend=backend,
            fail_on_region_error=fail_on_region_error,
            logger=logger,
        )
        return result.dataset, {
            "report": result.report,
            "candidates": candidates_frame(candidates),
            "config": config,
        }

    return Stage(name=f"incorporate:{config.label}", func=_run)


def make_relabel_stage(mapping: LabelMapping, key: str, target: str | None = None) -> Stage:
    """Relabel `obs[key]` into `obs[target or key]` in every region."""
    out_key = target or key

    def _run(dataset: SpatialDataset) -> tuple[SpatialDataset, dict[str, Any]]:
        observed = []
        for aid, region in dataset.regions.items():
            if key not in region.obs.columns:
                raise KeyError(f"Region '{aid}' is missing obs['{key}'].")
            observed.extend(region.obs[key].dropna().astype(str).unique().tolist())
        mapping.validate(observed)

        updates = {}
        for aid, region in dataset.regions.items():
            new_region = region.copy()
            new_region.obs[out_key] = mapping.apply(region.obs[key])
            updates[aid] = new_region
        return dataset.with_regions(updates), {"key": key, "target": out_key}

    return Stage(name=f"relabel:{key}->{out_key}", func=_run)


def push_metadata(
    dataset: SpatialDataset,
    sink: MetadataSink,
    column: MetadataColumn,
    key: str,
) -> int:
    values = build_metadata_column(dataset, key, column)
    sink.push(column, values)
    return int(values.shape[0])


def _plot_pass(
    dataset: SpatialDataset,
    report: IncorporationReport,
    config: IncorporationConfig,
    plot_root: Path,
    images: dict[str, str],
) -> int:
    n_plots = 0
    for outcome in report.outcomes:
        if outcome.n_added == 0:
            continue
        aid = outcome.acquisition_id
        image = imread(images[aid]) if aid in images else None
        plot_region_overlay(
            dataset[aid],
            key=config.annotation_key,
            label=config.label,
            outpath=plot_root / sanitize_label(config.label) / f"{sanitize_label(aid)}.png",
            title=f"{aid}: {config.label}",
            image=image,
            flip_origin=config.flip_origin,
        )
        n_plots += 1
    return n_plots


def run_incorporation_pipeline(config: str | Path | PipelineConfig) -> dict[str, Any]:
    """Run all configured passes, persist the dataset, and push metadata."""
    cfg = config if isinstance(config, PipelineConfig) else load_pipeline_config(config)
    root = Path(cfg.outdir)
    root.mkdir(parents=True, exist_ok=True)
    logger = setup_logger(root / "logs" / "incorporation.log", "codexmarrow")
    apply_plot_style()

    dataset = read_dataset(cfg.h5ad_path, acquisition_key=cfg.acquisition_key)
    source = TableAnnotationSource.from_csv(cfg.roi_table)
    logger.info(
        "Loaded dataset=%s regions=%d cells=%d roi_table=%s",
        cfg.h5ad_path,
        len(dataset),
        dataset.n_cells,
        cfg.roi_table,
    )

    stages = [
        make_incorporation_stage(
            source,
            p,
            n_jobs=cfg.n_jobs,
            backend=cfg.backend,
            fail_on_region_error=cfg.fail_on_region_error,
            logger=logger,
        )
        for p in cfg.passes
    ]
    if cfg.relabel is not None:
        stages.append(
            make_relabel_stage(
                LabelMapping.from_dict(cfg.relabel),
                key=str(cfg.relabel_key),
                target=cfg.relabel_target,
            )
        )

    final, records = run_stages(dataset, stages, logger=logger)

    warnings: list[str] = []
    passes: list[dict[str, Any]] = []
    for rec in records:
        report = rec.info.get("report")
        if report is None:
            continue
        pass_cfg: IncorporationConfig = rec.info["config"]
        label_tag = sanitize_label(pass_cfg.label)
        atomic_write_csv(root / "tables" / f"candidates_{label_tag}.csv", rec.info["candidates"])
        checks = check_label_presence(rec.before, rec.after, report, pass_cfg.annotation_key)
        atomic_write_csv(root / "tables" / f"label_check_{label_tag}.csv", checks)
        assert_label_presence(checks)
        for failure in report.failures:
            warnings.append(
                f"{pass_cfg.label}: region {failure.acquisition_id} failed ({failure.error_type}: {failure.message})"
            )
        if cfg.plot_regions:
            _plot_pass(rec.after, report, pass_cfg, root / "plots", cfg.images)
        passes.append(report.to_dict())

    out_h5ad = write_dataset(final, root / "incorporated.h5ad")
    logger.info("Wrote %s (cells=%d)", out_h5ad, final.n_cells)

    uploaded = None
    if cfg.upload is not None:
        column = MetadataColumn(
            name=cfg.upload.name,
            data_type=cfg.upload.data_type,
            id_field=cfg.upload.id_field,
            description=cfg.upload.description,
        )
        sink = DirectoryMetadataSink(cfg.upload.outdir or root / "metadata", logger=logger)
        n_rows = push_metadata(final, sink, column, key=cfg.upload.key)
        uploaded = {"name": column.name, "key": cfg.upload.key, "n_cells": n_rows}

    summary: dict[str, Any] = {
        "status": "PASS" if not warnings else "PASS_WITH_FAILURES",
        "timestamp_utc": now_utc_iso(),
        "version": __version__,
        "input": str(cfg.h5ad_path),
        "output": str(out_h5ad),
        "n_cells_before": dataset.n_cells,
        "n_cells_after": final.n_cells,
        "passes": passes,
        "stages": [r.name for r in records],
        "metadata_upload": uploaded,
        "plot_style": plot_style_dict(),
        "warnings": warnings,
    }
    write_json(root / "report.json", summary)
    write_runlog(root, summary, warnings)
    return summary
