"""
bcdistrain.single_peak
======================

Single-peak phase retrieval engine: a Fourier/intensity core with a regular or
non-uniform sample geometry, the per-peak state, and the classical ER, HIO,
shrinkwrap and centering projections acting on it.
"""

from .core import FourierCore
from .state import PeakState
from .projections import ER, HIO, Shrink, Center

__all__ = [
    'FourierCore',
    'PeakState',
    'ER',
    'HIO',
    'Shrink',
    'Center',
]
