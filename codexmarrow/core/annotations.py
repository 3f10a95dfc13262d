"""ROI annotation loading and reduction to synthetic cell candidates."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import pandas as pd

from codexmarrow.core.errors import MalformedAnnotation
from codexmarrow.core.geometry import reduce_centroid, validate_vertices
from codexmarrow.core.types import IncorporationConfig, ROIAnnotation, SyntheticCell

VERTEX_COLUMNS: tuple[str, ...] = (
    "acquisition_id",
    "story",
    "roi_id",
    "vertex_index",
    "x",
    "y",
)

LOGGER = logging.getLogger("codexmarrow")


class AnnotationSource(Protocol):
    """Anything that can return the long-form vertex table of a named story."""

    def fetch_story(self, story: str) -> pd.DataFrame: ...


def _validate_vertex_table(df: pd.DataFrame, origin: str) -> pd.DataFrame:
    missing = [c for c in VERTEX_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"ROI table from {origin} is missing columns: {', '.join(missing)}")
    out = df.loc[:, list(VERTEX_COLUMNS)].copy()
    for col in ("acquisition_id", "story", "roi_id"):
        out[col] = out[col].astype(str)
    out["vertex_index"] = pd.to_numeric(out["vertex_index"], errors="raise").astype("int64")
    out["x"] = pd.to_numeric(out["x"], errors="raise").astype(float)
    out["y"] = pd.to_numeric(out["y"], errors="raise").astype(float)
    return out


class TableAnnotationSource:
    """Annotation source backed by an exported vertex table (CSV or DataFrame)."""

    def __init__(self, table: pd.DataFrame, origin: str = "<dataframe>"):
        self._table = _validate_vertex_table(table, origin)
        self.origin = origin

    @classmethod
    def from_csv(cls, path: str | Path) -> "TableAnnotationSource":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"ROI table '{p}' not found.")
        return cls(pd.read_csv(p), origin=str(p))

    @property
    def stories(self) -> list[str]:
        return sorted(self._table["story"].unique().tolist())

    def fetch_story(self, story: str) -> pd.DataFrame:
        sub = self._table[self._table["story"] == str(story)]
        if sub.empty:
            raise KeyError(f"Story '{story}' not found in {self.origin}.")
        return sub.reset_index(drop=True)


def group_annotations(vertices: pd.DataFrame, story: str) -> dict[str, list[ROIAnnotation]]:
    """Group a long-form vertex table into ROI polygons per acquisition."""
    df = _validate_vertex_table(vertices, f"story '{story}'")
    df = df[df["story"] == str(story)]
    out: dict[str, list[ROIAnnotation]] = {}
    for (aid, roi_id), grp in df.groupby(["acquisition_id", "roi_id"], sort=False):
        ordered = grp.sort_values("vertex_index", kind="mergesort")
        out.setdefault(str(aid), []).append(
            ROIAnnotation(
                acquisition_id=str(aid),
                story=str(story),
                roi_id=str(roi_id),
                vertices=ordered[["x", "y"]].to_numpy(dtype=float),
            )
        )
    return out


def load_annotations(source: AnnotationSource, story: str) -> dict[str, list[ROIAnnotation]]:
    return group_annotations(source.fetch_story(story), story)


def build_candidates(
    annotations: dict[str, list[ROIAnnotation]],
    config: IncorporationConfig,
    logger: logging.Logger | None = None,
) -> dict[str, list[SyntheticCell]]:
    """Reduce each ROI to one synthetic cell, skipping malformed polygons."""
    log = logger or LOGGER
    out: dict[str, list[SyntheticCell]] = {}
    n_skipped = 0
    for aid, rois in annotations.items():
        cells: list[SyntheticCell] = []
        for roi in rois:
            try:
                validate_vertices(roi.vertices, config.min_vertices, roi_id=roi.roi_id)
                xy = reduce_centroid(roi.vertices, config.centroid_policy, roi_id=roi.roi_id)
            except MalformedAnnotation as exc:
                n_skipped += 1
                log.warning(
                    "ROI skipped: story=%s acquisition=%s roi=%s reason=%s",
                    roi.story,
                    aid,
                    roi.roi_id,
                    exc.reason,
                )
                continue
            cells.append(
                SyntheticCell(
                    acquisition_id=str(aid),
                    roi_id=roi.roi_id,
                    x=float(xy[0]),
                    y=float(xy[1]),
                    label=config.label,
                )
            )
        if cells:
            out[str(aid)] = cells
    log.info(
        "Built %d candidates for label=%s across %d regions (%d ROIs skipped)",
        int(sum(len(v) for v in out.values())),
        config.label,
        len(out),
        n_skipped,
    )
    return out


def candidates_frame(candidates: dict[str, list[SyntheticCell]]) -> pd.DataFrame:
    rows = [
        {
            "acquisition_id": c.acquisition_id,
            "roi_id": c.roi_id,
            "x": c.x,
            "y": c.y,
            "label": c.label,
        }
        for cells in candidates.values()
        for c in cells
    ]
    return pd.DataFrame(rows, columns=["acquisition_id", "roi_id", "x", "y", "label"])

