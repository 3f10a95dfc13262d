"""Error taxonomy for ROI incorporation."""

from __future__ import annotations


class IncorporationError(Exception):
    """Base class for expected, data-driven incorporation failures."""


class MalformedAnnotation(IncorporationError):
    """ROI polygon cannot be reduced to a centroid (too few vertices, zero area)."""

    def __init__(self, roi_id: str, reason: str):
        self.roi_id = str(roi_id)
        self.reason = str(reason)
        super().__init__(f"ROI '{self.roi_id}' is malformed: {self.reason}")

    def __reduce__(self):
        return (type(self), (self.roi_id, self.reason))


class IdentifierCollision(IncorporationError):
    """A minted cell identifier already exists in the region."""


class SchemaMismatch(IncorporationError):
    """A per-cell matrix does not match the region channel set."""


class PartialInsertion(IncorporationError):
    """Per-cell tables disagree on row count after synthetic rows were staged."""


class UnmappedLabelError(IncorporationError, KeyError):
    """Observed labels are not covered by a label mapping."""

    def __init__(self, missing: list[str]):
        self.missing = sorted(str(m) for m in missing)
        super().__init__(f"Labels without a mapping: {', '.join(self.missing)}")

    def __str__(self) -> str:
        return str(self.args[0])

    def __reduce__(self):
        return (type(self), (self.missing,))


class RegionMergeError(IncorporationError):
    """Failure of one region's transform, tagged with its acquisition id."""

    def __init__(self, acquisition_id: str, cause: BaseException):
        self.acquisition_id = str(acquisition_id)
        self.cause = cause
        super().__init__(
            f"Region '{self.acquisition_id}' failed: {type(cause).__name__}: {cause}"
        )

    def __reduce__(self):
        return (type(self), (self.acquisition_id, self.cause))
