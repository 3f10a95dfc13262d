from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from codexmarrow import cli
from codexmarrow.core.dataset import SpatialDataset, write_dataset
from codexmarrow.core.types import IncorporationConfig, SyntheticCell
from codexmarrow.pipeline import stages
from codexmarrow.pipeline.incorporate import incorporate_objects


def _fake_summary(warnings):
    return {
        "passes": [{"label": "Fat droplet", "n_added": 3, "failures": []}],
        "output": "out/incorporated.h5ad",
        "warnings": warnings,
    }


def test_incorporate_entrypoint_calls_pipeline(monkeypatch, capsys):
    called: list[str] = []

    def _fake_run(config_path):
        called.append(config_path)
        return _fake_summary([])

    monkeypatch.setattr(stages, "run_incorporation_pipeline", _fake_run)
    rc = cli.main(["incorporate", "--config", "tiny.json"])
    assert rc == 0
    assert called == ["tiny.json"]
    assert "label=Fat droplet added=3" in capsys.readouterr().out


def test_incorporate_exit_code_signals_region_failures(monkeypatch):
    monkeypatch.setattr(stages, "run_incorporation_pipeline", lambda _cfg: _fake_summary(["R9 failed"]))
    assert cli.incorporate_main(["--config", "tiny.json"]) == 2


def test_incorporate_requires_config():
    with pytest.raises(SystemExit):
        cli.incorporate_main([])


def test_validate_counts_label_per_region(tmp_path: Path, toy_dataset, capsys):
    cfg = IncorporationConfig(story="Fat droplets", label="Fat droplet")
    cands = {
        aid: [SyntheticCell(aid, "fd-1", 3.0, 4.0, "Fat droplet")] for aid in ("R1", "R2", "R3")
    }
    result = incorporate_objects(toy_dataset, cands, cfg)
    h5ad = write_dataset(result.dataset, tmp_path / "inc.h5ad")

    rc = cli.main(
        ["validate", "--h5ad", str(h5ad), "--label", "Fat droplet", "--outdir", str(tmp_path / "val")]
    )
    assert rc == 0
    table = pd.read_csv(tmp_path / "val" / "tables" / "label_counts_Fat_droplet.csv")
    assert table["n_label"].tolist() == [1, 1, 1]
    assert (tmp_path / "val" / "plots" / "Fat_droplet" / "R2.png").exists()
    assert "regions_without_label=0" in capsys.readouterr().out


def test_validate_flags_regions_without_label(tmp_path: Path, make_region):
    h5ad = write_dataset(SpatialDataset({"R1": make_region("R1")}), tmp_path / "plain.h5ad")
    rc = cli.validate_main(
        ["--h5ad", str(h5ad), "--label", "Megakaryocyte", "--outdir", str(tmp_path), "--no-plots"]
    )
    assert rc == 1
    assert not (tmp_path / "plots").exists()
