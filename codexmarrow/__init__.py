"""codexmarrow public API."""

from codexmarrow._version import __version__
from codexmarrow.core.annotations import TableAnnotationSource, build_candidates
from codexmarrow.core.dataset import SpatialDataset, read_dataset, write_dataset
from codexmarrow.core.geometry import area_weighted_centroid, flip_y, mean_ceil_centroid
from codexmarrow.core.labels import LabelMapping
from codexmarrow.core.merge import merge_region
from codexmarrow.core.types import IncorporationConfig
from codexmarrow.pipeline.incorporate import incorporate_objects


def run_incorporation_pipeline(*args, **kwargs):
    """Lazy wrapper to avoid importing plotting dependencies at import time."""
    from codexmarrow.pipeline.stages import run_incorporation_pipeline as _run

    return _run(*args, **kwargs)


__all__ = [
    "__version__",
    "IncorporationConfig",
    "SpatialDataset",
    "read_dataset",
    "write_dataset",
    "TableAnnotationSource",
    "build_candidates",
    "mean_ceil_centroid",
    "area_weighted_centroid",
    "flip_y",
    "merge_region",
    "incorporate_objects",
    "LabelMapping",
    "run_incorporation_pipeline",
]
