"""Typed configuration and result containers for ROI incorporation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass(frozen=True)
class IncorporationConfig:
    """Configuration for one incorporation pass (e.g. fat droplets)."""

    story: str
    label: str
    centroid_policy: str = "mean_ceil"
    annotation_key: str = "annotation"
    project_columns: tuple[str, ...] = ()
    flip_origin: float = 0.0
    min_vertices: int = 3
    expected_channels: tuple[str, ...] | None = None
    background_layer: str | None = "background"
    legacy_background_source: bool = False


@dataclass(frozen=True)
class ROIAnnotation:
    """One manually drawn polygon or rectangle in ROI-source coordinates."""

    acquisition_id: str
    story: str
    roi_id: str
    vertices: np.ndarray

    @property
    def n_vertices(self) -> int:
        return int(np.asarray(self.vertices).shape[0])


@dataclass(frozen=True)
class SyntheticCell:
    """Point cell derived from one ROI centroid.

    - `x`, `y`: centroid in ROI-source (working) orientation.
    - `cell_id`: `None` until minted by the region merger.
    """

    acquisition_id: str
    roi_id: str
    x: float
    y: float
    label: str
    cell_id: int | None = None


@dataclass(frozen=True)
class RegionFailure:
    """A region whose transform failed and was passed through unchanged."""

    acquisition_id: str
    error_type: str
    message: str
    exception: BaseException | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RegionOutcome:
    acquisition_id: str
    n_input: int
    n_added: int
    new_ids: tuple[int, ...] = ()


@dataclass
class IncorporationReport:
    """Per-region summary of one dataset-level incorporation pass."""

    story: str
    label: str
    outcomes: list[RegionOutcome] = field(default_factory=list)
    failures: list[RegionFailure] = field(default_factory=list)

    @property
    def n_added(self) -> int:
        return int(sum(o.n_added for o in self.outcomes))

    @property
    def failed_regions(self) -> list[str]:
        return [f.acquisition_id for f in self.failures]

    def added_by_region(self) -> dict[str, int]:
        return {o.acquisition_id: o.n_added for o in self.outcomes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "story": self.story,
            "label": self.label,
            "n_added": self.n_added,
            "regions": [
                {
                    "acquisition_id": o.acquisition_id,
                    "n_input": o.n_input,
                    "n_added": o.n_added,
                    "new_ids": list(o.new_ids),
                }
                for o in self.outcomes
            ],
            "failures": [
                {
                    "acquisition_id": f.acquisition_id,
                    "error_type": f.error_type,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }
