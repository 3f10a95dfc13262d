"""Explicit old-label -> new-label mappings for cluster annotation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import pandas as pd

from codexmarrow.core.errors import UnmappedLabelError


@dataclass(frozen=True)
class LabelMapping:
    """Immutable relabeling table.

    Every observed label must be covered; unmapped labels raise instead of
    turning into missing values.
    """

    pairs: tuple[tuple[str, str], ...]

    def __post_init__(self) -> None:
        keys = [old for old, _ in self.pairs]
        dup = sorted({k for k in keys if keys.count(k) > 1})
        if dup:
            raise ValueError(f"Duplicate source labels in mapping: {', '.join(dup)}")
        for old, new in self.pairs:
            if str(new).strip() == "":
                raise ValueError(f"Empty target label for source label '{old}'.")

    @classmethod
    def from_dict(cls, mapping: Mapping[Any, Any]) -> "LabelMapping":
        return cls(pairs=tuple((str(k), str(v)) for k, v in mapping.items()))

    def as_dict(self) -> dict[str, str]:
        return dict(self.pairs)

    @property
    def targets(self) -> list[str]:
        out: list[str] = []
        for _, new in self.pairs:
            if new not in out:
                out.append(new)
        return out

    def validate(self, labels: Iterable[Any]) -> None:
        lookup = self.as_dict()
        observed = pd.Series(list(labels), dtype="object").dropna().astype(str).unique()
        missing = [lab for lab in observed if lab not in lookup]
        if missing:
            raise UnmappedLabelError(missing)

    def apply(self, labels: pd.Series) -> pd.Series:
        """Relabel a series; missing inputs stay missing, unmapped inputs raise."""
        self.validate(labels)
        lookup = self.as_dict()
        as_str = labels.astype("object").where(labels.notna(), None)
        mapped = as_str.map(lambda v: lookup[str(v)] if v is not None else None)
        return pd.Series(
            pd.Categorical(mapped, categories=self.targets),
            index=labels.index,
            name=labels.name,
        )
