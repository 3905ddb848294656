"""Per-peak reconstruction state."""

import torch

from bcdistrain.single_peak.core import FourierCore


class PeakState:
    """
    Current reconstruction of a single Bragg peak.

    ``support`` is held by reference: when several peaks are built on the same
    support tensor, an in-place support update made through one of them is seen by
    all of them.

    Args:
        loss (str): Loss kind passed to the FourierCore ('L2' or 'likelihood').
        intensity (torch.Tensor): Measured 3D intensity.
        rec_support (torch.Tensor): Reciprocal mask, True where the intensity is used.
        support (torch.Tensor): Boolean real-space support (shared, not copied).
        core (FourierCore, optional): Prebuilt core to use instead of building one.
        trunc_rec_support (bool): Forwarded to the FourierCore.
        dtype (torch.dtype): Complex dtype of ``real_space``.
    """
    def __init__(self,
                 loss: str,
                 intensity: torch.Tensor,
                 rec_support: torch.Tensor,
                 support: torch.Tensor,
                 core: FourierCore | None = None,
                 trunc_rec_support: bool = False,
                 dtype: torch.dtype = torch.complex128):
        if support.dtype != torch.bool:
            raise TypeError("support must be a boolean tensor.")
        if tuple(support.shape) != tuple(intensity.shape):
            raise ValueError(f"support shape {tuple(support.shape)} must match intensity shape {tuple(intensity.shape)}.")

        if core is None:
            core = FourierCore(intensity, rec_support, loss=loss, trunc_rec_support=trunc_rec_support)
        elif core.image_shape != tuple(intensity.shape):
            raise ValueError(f"core shape {core.image_shape} must match intensity shape {tuple(intensity.shape)}.")

        self.core = core
        self.support = support
        self.real_space = torch.zeros(support.shape, dtype=dtype, device=support.device)
        self.initialize_from_support()

    def initialize_from_support(self):
        """Sets the real-space estimate to the support indicator (unit amplitude, zero phase)."""
        self.real_space.copy_(self.support.to(self.real_space.dtype))

    @property
    def shape(self):
        return tuple(self.real_space.shape)
