"""Centroid policies and axis conventions for ROI polygons."""

from __future__ import annotations

from typing import Callable

import numpy as np
from shapely.geometry import Polygon

from codexmarrow.core.errors import MalformedAnnotation

MIN_POLYGON_VERTICES = 3


def validate_vertices(
    vertices: np.ndarray,
    min_vertices: int = MIN_POLYGON_VERTICES,
    roi_id: str = "?",
) -> np.ndarray:
    arr = np.asarray(vertices, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise MalformedAnnotation(roi_id, f"vertices must have shape (N, 2), received {arr.shape}")
    if arr.shape[0] < int(min_vertices):
        raise MalformedAnnotation(
            roi_id, f"{arr.shape[0]} vertices, at least {int(min_vertices)} required"
        )
    if not np.isfinite(arr).all():
        raise MalformedAnnotation(roi_id, "vertices contain NaN/inf values")
    return arr


def polygon_centroid(vertices: np.ndarray, roi_id: str = "?") -> np.ndarray:
    """Area-weighted centroid of the polygon traced by `vertices` (unrounded)."""
    arr = validate_vertices(vertices, roi_id=roi_id)
    poly = Polygon(arr)
    if poly.area <= 0.0:
        raise MalformedAnnotation(roi_id, "polygon has zero area")
    c = poly.centroid
    return np.array([c.x, c.y], dtype=float)


def mean_ceil_centroid(vertices: np.ndarray, roi_id: str = "?") -> np.ndarray:
    """Vertex mean rounded up on both axes (fat droplet policy)."""
    arr = validate_vertices(vertices, roi_id=roi_id)
    return np.ceil(arr.mean(axis=0))


def area_weighted_centroid(vertices: np.ndarray, roi_id: str = "?") -> np.ndarray:
    """True polygon centroid rounded to the nearest integer (megakaryocyte policy)."""
    return np.round(polygon_centroid(vertices, roi_id=roi_id))


CENTROID_POLICIES: dict[str, Callable[..., np.ndarray]] = {
    "mean_ceil": mean_ceil_centroid,
    "area_weighted": area_weighted_centroid,
}


def reduce_centroid(vertices: np.ndarray, policy: str, roi_id: str = "?") -> np.ndarray:
    key = str(policy).strip().lower()
    if key not in CENTROID_POLICIES:
        raise ValueError(
            f"Unsupported centroid policy '{policy}'. Use one of: {', '.join(CENTROID_POLICIES)}."
        )
    return CENTROID_POLICIES[key](vertices, roi_id=roi_id)


def flip_y(xy: np.ndarray, origin: float = 0.0) -> np.ndarray:
    """Map between stored and ROI-source orientation: y -> origin - y.

    The transform is its own inverse, so applying it twice returns the input.
    """
    arr = np.array(xy, dtype=float, copy=True)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError(f"xy must have shape (N, 2+), received {arr.shape}.")
    arr[:, 1] = float(origin) - arr[:, 1]
    return arr
