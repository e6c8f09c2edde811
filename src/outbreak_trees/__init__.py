"""Stochastic SIR outbreak simulation with transmission-tree and phylogeny derivation."""

from .version_info import VERSION as __version__  # noqa: F401
