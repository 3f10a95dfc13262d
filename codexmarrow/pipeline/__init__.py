"""Dataset-level incorporation pipeline entrypoints."""

from codexmarrow.pipeline.incorporate import IncorporationResult, incorporate_objects


def run_incorporation_pipeline(*args, **kwargs):
    from codexmarrow.pipeline.stages import run_incorporation_pipeline as _run

    return _run(*args, **kwargs)


__all__ = ["IncorporationResult", "incorporate_objects", "run_incorporation_pipeline"]
