from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from codexmarrow.core.annotations import (
    TableAnnotationSource,
    build_candidates,
    candidates_frame,
    group_annotations,
    load_annotations,
)
from codexmarrow.core.types import IncorporationConfig


def _vertex_rows(aid: str, story: str, roi_id: str, verts) -> list[dict]:
    return [
        {"acquisition_id": aid, "story": story, "roi_id": roi_id, "vertex_index": i, "x": x, "y": y}
        for i, (x, y) in enumerate(verts)
    ]


def _roi_table() -> pd.DataFrame:
    rows = []
    rows += _vertex_rows("R1", "Fat droplets", "fd-1", [(0, 0), (1, 0), (1, 1), (0, 1)])
    rows += _vertex_rows("R1", "Fat droplets", "fd-2", [(10, 10), (12, 10)])
    rows += _vertex_rows("R1", "Fat droplets", "fd-3", [(20, 20)])
    rows += _vertex_rows("R2", "Fat droplets", "fd-4", [(4, 4), (8, 4), (8, 8), (4, 8)])
    rows += _vertex_rows("R2", "Megakaryocytes", "mk-1", [(0, 0), (4, 0), (0, 3)])
    return pd.DataFrame(rows)


def test_group_annotations_orders_vertices_by_index():
    table = _roi_table()
    shuffled = table.sample(frac=1.0, random_state=3)
    grouped = group_annotations(shuffled, "Fat droplets")
    assert sorted(grouped) == ["R1", "R2"]
    fd1 = next(r for r in grouped["R1"] if r.roi_id == "fd-1")
    assert fd1.vertices.tolist() == [[0, 0], [1, 0], [1, 1], [0, 1]]
    assert fd1.n_vertices == 4
    assert {r.roi_id for r in grouped["R1"]} == {"fd-1", "fd-2", "fd-3"}


def test_malformed_rois_are_skipped_without_dropping_region(caplog):
    caplog.set_level(logging.WARNING)
    cfg = IncorporationConfig(story="Fat droplets", label="Fat droplet")
    grouped = group_annotations(_roi_table(), "Fat droplets")
    candidates = build_candidates(grouped, cfg, logger=logging.getLogger("test"))

    assert [c.roi_id for c in candidates["R1"]] == ["fd-1"]
    assert (candidates["R1"][0].x, candidates["R1"][0].y) == (1.0, 1.0)
    assert [c.roi_id for c in candidates["R2"]] == ["fd-4"]
    assert (candidates["R2"][0].x, candidates["R2"][0].y) == (6.0, 6.0)
    assert all(c.label == "Fat droplet" and c.cell_id is None for c in candidates["R1"])
    assert "ROI skipped" in caplog.text
    assert "fd-2" in caplog.text
    assert "fd-3" in caplog.text


def test_region_with_only_malformed_rois_has_no_candidates():
    table = pd.DataFrame(_vertex_rows("R9", "Fat droplets", "bad", [(1, 1), (2, 2)]))
    cfg = IncorporationConfig(story="Fat droplets", label="Fat droplet")
    candidates = build_candidates(group_annotations(table, "Fat droplets"), cfg)
    assert candidates == {}


def test_area_weighted_policy_for_megakaryocytes():
    source = TableAnnotationSource(_roi_table())
    cfg = IncorporationConfig(
        story="Megakaryocytes", label="Megakaryocyte", centroid_policy="area_weighted"
    )
    candidates = build_candidates(load_annotations(source, cfg.story), cfg)
    (mk,) = candidates["R2"]
    assert (mk.x, mk.y) == (1.0, 1.0)
    frame = candidates_frame(candidates)
    assert frame.columns.tolist() == ["acquisition_id", "roi_id", "x", "y", "label"]
    assert frame["label"].tolist() == ["Megakaryocyte"]


def test_table_source_validation(tmp_path: Path):
    with pytest.raises(KeyError, match="missing columns"):
        TableAnnotationSource(pd.DataFrame({"acquisition_id": ["R1"], "x": [1.0]}))

    source = TableAnnotationSource(_roi_table())
    assert source.stories == ["Fat droplets", "Megakaryocytes"]
    with pytest.raises(KeyError, match="Story 'Vessels' not found"):
        source.fetch_story("Vessels")

    with pytest.raises(FileNotFoundError):
        TableAnnotationSource.from_csv(tmp_path / "missing.csv")

    csv_path = tmp_path / "rois.csv"
    _roi_table().to_csv(csv_path, index=False)
    loaded = TableAnnotationSource.from_csv(csv_path)
    fetched = loaded.fetch_story("Fat droplets")
    assert fetched["roi_id"].nunique() == 4
    assert np.issubdtype(fetched["x"].dtype, np.floating)
