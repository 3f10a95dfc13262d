"""Dataset-level driver: apply the region merger across all acquisitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import anndata as ad
from joblib import Parallel, delayed

from codexmarrow.core.dataset import SpatialDataset
from codexmarrow.core.errors import IncorporationError, RegionMergeError
from codexmarrow.core.merge import merge_region_with_ids
from codexmarrow.core.types import (
    IncorporationConfig,
    IncorporationReport,
    RegionFailure,
    RegionOutcome,
    SyntheticCell,
)

LOGGER = logging.getLogger("codexmarrow")

# Data problems confined to one region; anything else propagates.
EXPECTED_REGION_ERRORS = (IncorporationError, KeyError, ValueError)


@dataclass(frozen=True)
class IncorporationResult:
    dataset: SpatialDataset
    report: IncorporationReport


@dataclass(frozen=True)
class _RegionTask:
    acquisition_id: str
    region: ad.AnnData
    candidates: tuple[SyntheticCell, ...]
    config: IncorporationConfig
    project_values: dict[str, Any] | None


def _run_region_task(task: _RegionTask) -> tuple[str, ad.AnnData | None, list[SyntheticCell], RegionFailure | None]:
    try:
        merged, minted = merge_region_with_ids(
            task.region,
            task.candidates,
            task.config,
            task.acquisition_id,
            project_values=task.project_values,
        )
    except EXPECTED_REGION_ERRORS as exc:
        failure = RegionFailure(
            acquisition_id=task.acquisition_id,
            error_type=type(exc).__name__,
            message=str(exc),
            exception=exc,
        )
        return task.acquisition_id, None, [], failure
    return task.acquisition_id, merged, minted, None


def _project_values(dataset: SpatialDataset, aid: str, columns: Sequence[str]) -> dict[str, Any] | None:
    project = dataset.project_metadata
    if aid not in project.index:
        return None
    row = project.loc[aid]
    values = {c: row[c] for c in columns if c in project.columns}
    return values or None


def incorporate_objects(
    dataset: SpatialDataset,
    candidates: Mapping[str, Sequence[SyntheticCell]],
    config: IncorporationConfig,
    *,
    n_jobs: int = 1,
    backend: str = "loky",
    fail_on_region_error: bool = False,
    logger: logging.Logger | None = None,
) -> IncorporationResult:
    """Merge per-region candidates into every region of `dataset`.

    Regions without candidates are passed through untouched. A region whose
    merge fails with a data error keeps its input state and is listed in the
    report; the other regions are unaffected.
    """
    log = logger or LOGGER
    report = IncorporationReport(story=config.story, label=config.label)

    for aid in sorted(set(candidates) - set(dataset.acquisition_ids)):
        msg = f"{len(candidates[aid])} candidates target unknown acquisition '{aid}'."
        report.failures.append(RegionFailure(aid, "KeyError", msg, exception=KeyError(msg)))
        log.warning("Region skipped: acquisition=%s reason=%s", aid, msg)

    tasks = [
        _RegionTask(
            acquisition_id=aid,
            region=region,
            candidates=tuple(candidates.get(aid, ())),
            config=config,
            project_values=_project_values(dataset, aid, config.project_columns),
        )
        for aid, region in dataset.regions.items()
        if len(candidates.get(aid, ())) > 0
    ]

    jobs = int(n_jobs)
    if jobs == 1 or len(tasks) <= 1:
        rows = [_run_region_task(t) for t in tasks]
    else:
        log.info("Merging %d regions n_jobs=%d backend=%s", len(tasks), jobs, backend)
        rows = Parallel(n_jobs=jobs, backend=backend)(delayed(_run_region_task)(t) for t in tasks)

    # Barrier: the new dataset is assembled only once every task has returned.
    updates: dict[str, ad.AnnData] = {}
    by_aid = {aid: (merged, minted, failure) for aid, merged, minted, failure in rows}
    for aid, region in dataset.regions.items():
        if aid not in by_aid:
            report.outcomes.append(RegionOutcome(aid, int(region.n_obs), 0))
            continue
        merged, minted, failure = by_aid[aid]
        if failure is not None:
            report.failures.append(failure)
            report.outcomes.append(RegionOutcome(aid, int(region.n_obs), 0))
            log.warning(
                "Region merge failed: acquisition=%s error=%s reason=%s",
                aid,
                failure.error_type,
                failure.message,
            )
            continue
        updates[aid] = merged
        report.outcomes.append(
            RegionOutcome(
                aid,
                int(region.n_obs),
                len(minted),
                tuple(int(c.cell_id) for c in minted),
            )
        )
        log.info("Region merged: acquisition=%s added=%d label=%s", aid, len(minted), config.label)

    if fail_on_region_error and report.failures:
        first = report.failures[0]
        cause = first.exception if first.exception is not None else IncorporationError(first.message)
        raise RegionMergeError(first.acquisition_id, cause) from first.exception

    return IncorporationResult(dataset=dataset.with_regions(updates), report=report)
