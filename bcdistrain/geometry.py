"""Reciprocal-space sampling geometry for rotation-aware and high-strain reconstructions."""

import math

import torch


def reciprocal_grid(shape: tuple[int, int, int], dtype=torch.float64, device='cpu') -> torch.Tensor:
    """
    Frequency coordinates of an unshifted FFT grid.

    Each axis carries ``2*pi*fftfreq(n)``, so values lie in ``[-pi, pi)`` and the grid
    matches the sample ordering of ``torch.fft.fftn``.

    Args:
        shape (tuple[int, int, int]): Volume shape.

    Returns:
        torch.Tensor: Coordinates of shape (3, prod(shape)), rows are the x, y, z
        components in 'ij' (C-order) flattening.
    """
    if len(shape) != 3:
        raise ValueError(f"shape must have 3 entries, got {shape}.")
    axes = [2 * math.pi * torch.fft.fftfreq(n, dtype=dtype, device=device) for n in shape]
    grid_x, grid_y, grid_z = torch.meshgrid(*axes, indexing='ij')
    return torch.stack((grid_x.flatten(), grid_y.flatten(), grid_z.flatten()), dim=0)


def rotate_coordinates(coords: torch.Tensor, rotation: torch.Tensor) -> torch.Tensor:
    """Applies a 3x3 rotation to (3, M) coordinates."""
    rotation = torch.as_tensor(rotation, dtype=coords.dtype, device=coords.device)
    if rotation.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {tuple(rotation.shape)}.")
    return rotation @ coords


class SampleGeometry:
    """
    Continuous sample positions of every peak on the canonical object grid.

    Each peak's measured grid is the base reciprocal grid rotated by that peak's
    diffractometer rotation. A sample survives only if, for every peak, all three
    rotated coordinates stay inside ``[-pi, pi]``. The surviving flat indices
    (``keep_ind``) are common to all peaks so measured intensities and masks are
    indexed the same way whichever peak is mounted.
    """

    def __init__(self,
                 shape: tuple[int, int, int],
                 rotations: list[torch.Tensor] | None,
                 num_peaks: int,
                 dtype=torch.float64,
                 device: str | torch.device = 'cpu'):
        self.shape = tuple(shape)
        self.device = torch.device(device) if isinstance(device, str) else device

        if rotations is None:
            rotations = [torch.eye(3, dtype=dtype, device=self.device) for _ in range(num_peaks)]
        if len(rotations) != num_peaks:
            raise ValueError(f"Expected {num_peaks} rotations, got {len(rotations)}.")

        base = reciprocal_grid(self.shape, dtype=dtype, device=self.device)
        rotated = [rotate_coordinates(base, r) for r in rotations]

        keep = torch.ones(base.shape[1], dtype=torch.bool, device=self.device)
        for coords in rotated:
            keep &= torch.all(coords.abs() <= math.pi, dim=0)
        if not torch.any(keep):
            raise ValueError("No reciprocal sample stays inside [-pi, pi] for every rotation.")

        self.keep_ind = torch.nonzero(keep).flatten()
        self.coords = [c[:, self.keep_ind] for c in rotated]

    def __len__(self):
        return len(self.coords)

    def points(self, peak_index: int) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """x, y, z sample coordinates of one peak, restricted to ``keep_ind``."""
        c = self.coords[peak_index]
        return c[0], c[1], c[2]

    def program(self, core, peak_index: int, recompute_plan: bool = True):
        """Programs a FourierCore with the retained samples of ``peak_index``."""
        x, y, z = self.points(peak_index)
        core.set_points(x, y, z, recompute_plan=recompute_plan, sample_index=self.keep_ind)
