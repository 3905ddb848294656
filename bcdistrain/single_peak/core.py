"""Fourier transform and intensity-matching core of one Bragg peak."""

import torch

from bcdistrain.nufft import FourierPlan, GridFFTPlan, NonUniformPlan

LOSSES = ('L2', 'likelihood')


class FourierCore:
    """
    Measured intensity, reciprocal mask and transform plan of a single peak.

    The mask (``rec_support``) marks the reciprocal samples whose measured
    intensity constrains the reconstruction; unmasked samples are left free by the
    modulus projection and ignored by the loss.

    Args:
        intensity (torch.Tensor): Measured 3D intensity (non-negative).
        rec_support (torch.Tensor): Boolean mask, same shape as ``intensity``.
        loss (str): 'L2' (amplitude least squares) or 'likelihood' (Poisson).
        trunc_rec_support (bool): If True, samples with zero measured intensity are
            dropped from the mask.
        chunk_size (int): Chunk size handed to a non-uniform plan.
    """
    def __init__(self,
                 intensity: torch.Tensor,
                 rec_support: torch.Tensor,
                 loss: str = 'L2',
                 trunc_rec_support: bool = False,
                 chunk_size: int = 4096):
        if loss not in LOSSES:
            raise ValueError(f"Unknown loss '{loss}'. Must be one of {LOSSES}.")
        if not isinstance(intensity, torch.Tensor):
            raise TypeError("intensity must be a PyTorch tensor.")
        if intensity.ndim != 3:
            raise ValueError(f"intensity must be a 3D tensor, got shape {tuple(intensity.shape)}.")
        rec_support = torch.as_tensor(rec_support, device=intensity.device).to(torch.bool)
        if rec_support.shape != intensity.shape:
            raise ValueError(f"rec_support shape {tuple(rec_support.shape)} must match intensity shape {tuple(intensity.shape)}.")
        if torch.any(intensity < 0):
            raise ValueError("intensity must be non-negative.")

        self.loss_kind = loss
        self.trunc_rec_support = trunc_rec_support
        self.chunk_size = chunk_size
        self.image_shape = tuple(intensity.shape)

        # full-grid copies, sample_index selects from these
        self._grid_intens = intensity
        self._grid_rec_support = rec_support
        self.sample_index = None

        self.intens = intensity
        self.rec_support = self._truncate(rec_support, intensity)
        self.plan: FourierPlan = GridFFTPlan(self.image_shape)

    def _truncate(self, rec_support, intensity):
        if self.trunc_rec_support:
            return rec_support & (intensity > 0)
        return rec_support

    @property
    def recip_space(self):
        return self.plan.recip_space

    def set_points(self,
                   x: torch.Tensor,
                   y: torch.Tensor,
                   z: torch.Tensor,
                   recompute_plan: bool = True,
                   sample_index: torch.Tensor | None = None):
        """
        Programs a non-uniform sample geometry.

        Args:
            x, y, z: Angular sample coordinates, one entry per measured sample kept.
            recompute_plan: Build a new plan. If False, the existing non-uniform plan
                keeps its sizes and only its coordinates are swapped.
            sample_index: Flat indices into the measured grid selecting the samples
                that ``x, y, z`` describe. Defaults to all samples in C order.
        """
        if sample_index is None:
            sample_index = torch.arange(self._grid_intens.numel(), device=self._grid_intens.device)
        if sample_index.shape[0] != x.shape[0]:
            raise ValueError(f"sample_index has {sample_index.shape[0]} entries but {x.shape[0]} coordinates were given.")

        if recompute_plan or not isinstance(self.plan, NonUniformPlan):
            self.plan = NonUniformPlan(self.image_shape, x, y, z, chunk_size=self.chunk_size)
        else:
            if x.shape[0] != self.plan.num_samples:
                raise ValueError("Cannot change the number of samples without recomputing the plan.")
            self.plan.x, self.plan.y, self.plan.z = x, y, z
            self.plan.recip_space = None

        self.sample_index = sample_index
        self.intens = self._grid_intens.flatten()[sample_index]
        self.rec_support = self._truncate(self._grid_rec_support.flatten()[sample_index], self.intens)

    def forward(self, real_space: torch.Tensor) -> torch.Tensor:
        return self.plan.forward(real_space)

    def inverse(self, recip: torch.Tensor) -> torch.Tensor:
        return self.plan.inverse(recip)

    def modulus_projection(self, recip: torch.Tensor) -> torch.Tensor:
        """Replaces masked magnitudes by the measured ones, keeping the phases."""
        magnitude = torch.abs(recip)
        measured = torch.sqrt(self.intens).to(magnitude.dtype)
        unit = torch.where(magnitude > 0, recip / torch.where(magnitude > 0, magnitude, torch.ones_like(magnitude)),
                           torch.ones_like(recip))
        return torch.where(self.rec_support, measured * unit, recip)

    def loss(self, recip: torch.Tensor | None = None) -> float:
        """
        Data mismatch of the current (or given) reciprocal field over the mask.

        'L2' is ``sum (|R| - sqrt(I))^2``; 'likelihood' is the Poisson negative
        log-likelihood ``sum |R|^2 - I log |R|^2`` (constant terms dropped).
        """
        if recip is None:
            recip = self.plan.recip_space
        if recip is None:
            raise RuntimeError("No reciprocal field available; run a forward transform first.")
        mag2 = torch.abs(recip) ** 2
        intens = self.intens.to(mag2.dtype)
        mask = self.rec_support
        if self.loss_kind == 'L2':
            return torch.sum(((torch.sqrt(mag2) - torch.sqrt(intens)) ** 2)[mask]).item()
        return torch.sum((mag2 - intens * torch.log(mag2 + 1e-12))[mask]).item()
