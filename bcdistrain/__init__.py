"""
bcdistrain: multi-peak Bragg coherent diffraction imaging.

Reconstructs a crystal's density and vector displacement field from several
Bragg peaks by alternating single-peak phase retrieval (ER, HIO, shrinkwrap,
centering) with a cross-peak Mount projection.
"""

__version__ = "0.1.0"

from .utils import angle_difference, min_diff_angle
from .state import State
from .operators import Operator, OperatorList, ER, HIO, Shrink, Center, Mount, operate
from .reconstructors import MultiPeakReconstructor, default_schedule, fourier_error

__all__ = [
    'angle_difference',
    'min_diff_angle',
    'State',
    'Operator',
    'OperatorList',
    'ER',
    'HIO',
    'Shrink',
    'Center',
    'Mount',
    'operate',
    'MultiPeakReconstructor',
    'default_schedule',
    'fourier_error',
]
