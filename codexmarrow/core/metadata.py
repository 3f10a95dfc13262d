"""Per-cell metadata columns pushed to an external metadata store."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

import pandas as pd

from codexmarrow.core.dataset import SpatialDataset

DATA_TYPES: tuple[str, ...] = ("categorical", "continuous", "integer", "text")

LOGGER = logging.getLogger("codexmarrow")


@dataclass(frozen=True)
class MetadataColumn:
    """Descriptor for one uploaded column."""

    name: str
    data_type: str = "categorical"
    id_field: str = "cell_id"
    description: str = ""

    def __post_init__(self) -> None:
        if str(self.name).strip() == "":
            raise ValueError("Metadata column name is empty.")
        if self.data_type not in DATA_TYPES:
            raise ValueError(
                f"Unsupported metadata data type '{self.data_type}'. Use one of: {', '.join(DATA_TYPES)}."
            )


class MetadataSink(Protocol):
    def push(self, column: MetadataColumn, values: pd.DataFrame) -> None: ...


def build_metadata_column(dataset: SpatialDataset, key: str, column: MetadataColumn) -> pd.DataFrame:
    """Collect `obs[key]` across regions as a `[id_field, name]` table.

    The id field holds the globally unique obs name of each cell.
    """
    frames = []
    for aid, region in dataset.regions.items():
        if key not in region.obs.columns:
            raise KeyError(f"Region '{aid}' is missing obs['{key}'].")
        frames.append(
            pd.DataFrame(
                {
                    column.id_field: region.obs_names.astype(str),
                    column.name: region.obs[key].astype("object").to_numpy(),
                }
            )
        )
    if not frames:
        return pd.DataFrame(columns=[column.id_field, column.name])
    return pd.concat(frames, ignore_index=True)


class DirectoryMetadataSink:
    """Writes each pushed column as `<name>.csv` plus `<name>.json` manifest."""

    def __init__(self, root: str | Path, logger: logging.Logger | None = None):
        self.root = Path(root)
        self.logger = logger or LOGGER

    def push(self, column: MetadataColumn, values: pd.DataFrame) -> None:
        missing = [c for c in (column.id_field, column.name) if c not in values.columns]
        if missing:
            raise KeyError(f"Metadata values missing columns: {', '.join(missing)}")
        if values[column.id_field].duplicated().any():
            raise ValueError(f"Metadata values have duplicated '{column.id_field}' entries.")

        self.root.mkdir(parents=True, exist_ok=True)
        csv_path = self.root / f"{column.name}.csv"
        tmp = csv_path.with_suffix(".csv.tmp")
        values.loc[:, [column.id_field, column.name]].to_csv(tmp, index=False)
        tmp.replace(csv_path)

        manifest = asdict(column)
        manifest["n_cells"] = int(values.shape[0])
        manifest["n_missing"] = int(values[column.name].isna().sum())
        with open(self.root / f"{column.name}.json", "w", encoding="utf-8") as fh:
            json.dump(manifest, fh, indent=2, sort_keys=True)
        self.logger.info(
            "Pushed metadata column=%s n_cells=%d to %s", column.name, values.shape[0], self.root
        )
