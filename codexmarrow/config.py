"""Configuration loading utilities for incorporation pipelines."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from codexmarrow.core.geometry import CENTROID_POLICIES
from codexmarrow.core.types import IncorporationConfig

_PASS_FIELDS = {f.name for f in fields(IncorporationConfig)}


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a pipeline config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def incorporation_config_from_dict(data: dict[str, Any]) -> IncorporationConfig:
    unknown = sorted(set(data) - _PASS_FIELDS)
    if unknown:
        raise ValueError(f"Unknown incorporation keys: {', '.join(unknown)}")
    for key in ("story", "label"):
        if str(data.get(key, "")).strip() == "":
            raise ValueError(f"Incorporation pass requires a non-empty '{key}'.")
    policy = str(data.get("centroid_policy", "mean_ceil")).strip().lower()
    if policy not in CENTROID_POLICIES:
        raise ValueError(
            f"Unsupported centroid policy '{policy}'. Use one of: {', '.join(CENTROID_POLICIES)}."
        )
    min_vertices = int(data.get("min_vertices", 3))
    if min_vertices < 3:
        raise ValueError("min_vertices must be at least 3.")

    kwargs = dict(data)
    kwargs["centroid_policy"] = policy
    kwargs["min_vertices"] = min_vertices
    kwargs["project_columns"] = tuple(str(c) for c in data.get("project_columns", ()))
    if data.get("expected_channels") is not None:
        kwargs["expected_channels"] = tuple(str(c) for c in data["expected_channels"])
    if "flip_origin" in data:
        kwargs["flip_origin"] = float(data["flip_origin"])
    return IncorporationConfig(**kwargs)


@dataclass(frozen=True)
class MetadataUploadConfig:
    name: str
    key: str
    data_type: str = "categorical"
    id_field: str = "cell_id"
    description: str = ""
    outdir: str | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Whole-run configuration: inputs, ordered passes, outputs."""

    h5ad_path: str
    roi_table: str
    outdir: str
    passes: tuple[IncorporationConfig, ...]
    acquisition_key: str = "acquisition_id"
    relabel: dict[str, str] | None = None
    relabel_key: str | None = None
    relabel_target: str | None = None
    n_jobs: int = 1
    backend: str = "loky"
    fail_on_region_error: bool = False
    plot_regions: bool = True
    images: dict[str, str] = field(default_factory=dict)
    upload: MetadataUploadConfig | None = None


def pipeline_config_from_dict(data: dict[str, Any]) -> PipelineConfig:
    for key in ("h5ad_path", "roi_table", "outdir"):
        if key not in data:
            raise KeyError(f"Pipeline config requires '{key}'.")
    raw_passes = data.get("passes", [])
    if not isinstance(raw_passes, list) or not raw_passes:
        raise ValueError("Pipeline config requires a non-empty 'passes' list.")
    passes = tuple(incorporation_config_from_dict(p) for p in raw_passes)

    relabel = data.get("relabel")
    if relabel is not None:
        if not isinstance(relabel, dict):
            raise ValueError("'relabel' must be a JSON object mapping old to new labels.")
        if not data.get("relabel_key"):
            raise ValueError("'relabel' requires 'relabel_key'.")

    upload = data.get("upload")
    upload_cfg = MetadataUploadConfig(**upload) if upload is not None else None

    n_jobs = int(data.get("n_jobs", 1))
    if n_jobs == 0:
        raise ValueError("n_jobs must be non-zero.")

    return PipelineConfig(
        h5ad_path=str(data["h5ad_path"]),
        roi_table=str(data["roi_table"]),
        outdir=str(data["outdir"]),
        passes=passes,
        acquisition_key=str(data.get("acquisition_key", "acquisition_id")),
        relabel={str(k): str(v) for k, v in relabel.items()} if relabel is not None else None,
        relabel_key=data.get("relabel_key"),
        relabel_target=data.get("relabel_target"),
        n_jobs=n_jobs,
        backend=str(data.get("backend", "loky")),
        fail_on_region_error=bool(data.get("fail_on_region_error", False)),
        plot_regions=bool(data.get("plot_regions", True)),
        images={str(k): str(v) for k, v in data.get("images", {}).items()},
        upload=upload_cfg,
    )


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    return pipeline_config_from_dict(load_json_config(path))
