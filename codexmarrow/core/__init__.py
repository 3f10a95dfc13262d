"""Core incorporation subpackage."""

from codexmarrow.core.annotations import (
    TableAnnotationSource,
    build_candidates,
    group_annotations,
    load_annotations,
)
from codexmarrow.core.dataset import SpatialDataset, read_dataset, write_dataset
from codexmarrow.core.errors import (
    IdentifierCollision,
    IncorporationError,
    MalformedAnnotation,
    PartialInsertion,
    RegionMergeError,
    SchemaMismatch,
    UnmappedLabelError,
)
from codexmarrow.core.geometry import (
    area_weighted_centroid,
    flip_y,
    mean_ceil_centroid,
    reduce_centroid,
)
from codexmarrow.core.labels import LabelMapping
from codexmarrow.core.merge import merge_region
from codexmarrow.core.types import (
    IncorporationConfig,
    IncorporationReport,
    ROIAnnotation,
    SyntheticCell,
)

__all__ = [
    "IncorporationConfig",
    "IncorporationReport",
    "ROIAnnotation",
    "SyntheticCell",
    "SpatialDataset",
    "read_dataset",
    "write_dataset",
    "TableAnnotationSource",
    "group_annotations",
    "load_annotations",
    "build_candidates",
    "mean_ceil_centroid",
    "area_weighted_centroid",
    "reduce_centroid",
    "flip_y",
    "merge_region",
    "LabelMapping",
    "IncorporationError",
    "MalformedAnnotation",
    "IdentifierCollision",
    "SchemaMismatch",
    "PartialInsertion",
    "UnmappedLabelError",
    "RegionMergeError",
]
