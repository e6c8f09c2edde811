# src/outbreak_trees/errors.py
"""
Exceptions raised across the package.

Everything derives from :class:`OutbreakTreesError`, so callers can catch one
class. The parameter errors also subclass ``ValueError`` and the run-time
failures ``RuntimeError``, which is what the simulation code raised before
the errors were given names.
"""

from __future__ import annotations


class OutbreakTreesError(Exception):
    """Base class for all package-specific exceptions."""


class InvalidParameter(OutbreakTreesError, ValueError):
    """
    A simulation, sampling or aggregation parameter is out of range.

    Examples
    --------
    * ``gamma * dt`` outside ``[0, 1]`` (the binomial recovery draw is undefined)
    * negative population counts, ``k <= 0``
    * a time-series step that is not a multiple of ``dt``
    """


class SampleSizeExceedsPopulation(OutbreakTreesError, ValueError):
    """A fixed-count downsample asked for more individuals than were infected."""


class InsufficientEpidemicSize(OutbreakTreesError, RuntimeError):
    """
    Every attempt burned out below ``min_epi_size``.

    The last discarded :class:`~outbreak_trees.simulate.epidemic.OutbreakState`
    is kept on ``state`` for inspection.
    """

    def __init__(self, message, state=None, attempts=0):
        super().__init__(message)
        self.state = state
        self.attempts = attempts


class InconsistentTransmissionData(OutbreakTreesError, RuntimeError):
    """
    Infector records are cyclic, dangling or time-inconsistent.

    This signals corrupted simulator output, not a user error, and is never
    recovered from locally.
    """


__all__ = [
    "OutbreakTreesError",
    "InvalidParameter",
    "SampleSizeExceedsPopulation",
    "InsufficientEpidemicSize",
    "InconsistentTransmissionData",
]
