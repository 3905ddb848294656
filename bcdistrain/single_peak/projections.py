"""Single-peak projection steps: error reduction, hybrid input-output, shrinkwrap, centering."""

import torch

from bcdistrain.single_peak.state import PeakState
from bcdistrain.utils import centering_shift, gaussian_blur


def _projected(peak: PeakState) -> torch.Tensor:
    # modulus constraint in reciprocal space, back to real space
    recip = peak.core.forward(peak.real_space)
    return peak.core.inverse(peak.core.modulus_projection(recip))


class ER:
    """One error-reduction iteration: modulus projection, then support projection."""

    def operate(self, peak: PeakState) -> PeakState:
        projected = _projected(peak)
        peak.real_space.copy_(torch.where(peak.support, projected, torch.zeros_like(projected)))
        return peak


class HIO:
    """
    One hybrid input-output iteration.

    Inside the support the modulus-projected field is kept; outside it the previous
    estimate is pushed away from the projection, ``rho - beta * P(rho)``.
    """

    def __init__(self, beta: float):
        if not 0 < beta <= 1:
            print(f"Warning: HIO beta={beta} is outside the usual (0, 1] range.")
        self.beta = beta

    def operate(self, peak: PeakState) -> PeakState:
        projected = _projected(peak)
        peak.real_space.copy_(torch.where(peak.support, projected, peak.real_space - self.beta * projected))
        return peak


class Shrink:
    """
    Shrinkwrap support update.

    The magnitude of the reconstruction is blurred with a Gaussian of width
    ``sigma`` (voxels) and the support becomes every voxel above ``threshold``
    times the blurred maximum. The support tensor is updated in place so peaks
    sharing it all see the new support. An all-zero reconstruction leaves the
    support untouched.
    """

    def __init__(self, threshold: float, sigma: float):
        if not 0 <= threshold < 1:
            raise ValueError(f"threshold must be in [0, 1), got {threshold}.")
        if sigma <= 0:
            raise ValueError(f"sigma must be positive, got {sigma}.")
        self.threshold = threshold
        self.sigma = sigma

    def operate(self, peak: PeakState) -> PeakState:
        blurred = gaussian_blur(torch.abs(peak.real_space), self.sigma)
        max_val = torch.max(blurred)
        if max_val > 0:
            peak.support.copy_(blurred > self.threshold * max_val)
        return peak


class Center:
    """
    Rolls the reconstruction and its support so the support's periodic centre of
    mass lands on voxel (0, 0, 0), the zero-frequency origin of the FFT grid.
    The applied integer shifts are kept in ``last_shifts``.
    """

    def __init__(self):
        self.last_shifts = (0, 0, 0)

    def operate(self, peak: PeakState) -> PeakState:
        shifts = centering_shift(peak.support.to(torch.float64))
        dims = tuple(range(peak.real_space.ndim))
        if any(shifts):
            peak.real_space.copy_(torch.roll(peak.real_space, shifts=shifts, dims=dims))
            peak.support.copy_(torch.roll(peak.support, shifts=shifts, dims=dims))
        self.last_shifts = shifts
        return peak
