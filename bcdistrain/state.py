"""Multi-peak reconstruction state: one shared object, one sub-state per measured peak."""

from typing import Optional, Sequence

import torch

from bcdistrain.geometry import SampleGeometry
from bcdistrain.single_peak import PeakState
from bcdistrain.utils import center_intensity, support_from_intensity


class State:
    """
    Reconstruction of a strained crystal from several Bragg peaks.

    The physical object is shared by all peaks: a density ``rho`` and a
    displacement field ``(ux, uy, uz)`` on one real-space grid with one boolean
    ``support``. Each measured peak owns a ``PeakState`` whose ``real_space`` is
    that peak's view of the object, ``rho * exp(-1j * g.u)``. Exactly one peak is
    active ("mounted") at a time; ER/HIO/Shrink/Center act on it and only Mount
    changes which one it is.

    By default each peak is first shifted so that its centre of mass sits on the
    zero frequency. If no support is passed, an initial guess is the inverse FFT of
    the first intensity thresholded at 0.1 of its maximum magnitude.

    Args:
        intensities: Sequence of N measured 3D intensities (tensors or arrays), all
            with the same shape, in unshifted FFT ordering.
        g_vecs: Sequence of N reciprocal-lattice vectors (length 3, non-zero).
        rec_supports: Sequence of N boolean masks, True where the intensity is used.
            None uses every sample of every peak.
        support: Optional boolean real-space support.
        loss: Loss kind of every peak's FourierCore ('L2' or 'likelihood').
        rotations: Optional sequence of N 3x3 rotations taking each peak's measured
            grid onto the canonical reciprocal grid.
        high_strain: Use the continuous (non-uniform) transform even without
            rotations.
        trunc_rec_support: Drop zero-intensity samples from the reciprocal masks.
        center_peaks: Center each intensity in the Fourier sense before use.
        generator: torch.Generator used for active-peak selection. None uses the
            global torch RNG.
        dtype: Real dtype of the shared fields (complex counterpart for peaks).
        device: Computation device.
        chunk_size: Samples per chunk of the non-uniform transform.
    """

    def __init__(self,
                 intensities: Sequence,
                 g_vecs: Sequence,
                 rec_supports: Optional[Sequence] = None,
                 support=None,
                 *,
                 loss: str = 'L2',
                 rotations: Optional[Sequence] = None,
                 high_strain: bool = False,
                 trunc_rec_support: bool = False,
                 center_peaks: bool = True,
                 generator: Optional[torch.Generator] = None,
                 dtype: torch.dtype = torch.float64,
                 device: str | torch.device = 'cpu',
                 chunk_size: int = 4096):
        self.device = torch.device(device) if isinstance(device, str) else device
        self.dtype = dtype
        self.complex_dtype = torch.complex128 if dtype == torch.float64 else torch.complex64
        self.generator = generator

        intensities, g_vecs, rec_supports, rotations = self._validate(intensities, g_vecs, rec_supports, rotations)
        self.g_vecs = g_vecs

        if center_peaks:
            centered = [center_intensity(i, m) for i, m in zip(intensities, rec_supports)]
            intensities = [c[0] for c in centered]
            rec_supports = [c[1] for c in centered]

        shape = tuple(intensities[0].shape)
        if support is None:
            support = support_from_intensity(intensities[0], threshold=0.1)
        else:
            support = torch.as_tensor(support, device=self.device)
            if tuple(support.shape) != shape:
                raise ValueError(f"support shape {tuple(support.shape)} must match intensity shape {shape}.")
            support = support.to(torch.bool).clone()
        self.support = support

        self.rho = torch.zeros(shape, dtype=dtype, device=self.device)
        self.ux = torch.zeros(shape, dtype=dtype, device=self.device)
        self.uy = torch.zeros(shape, dtype=dtype, device=self.device)
        self.uz = torch.zeros(shape, dtype=dtype, device=self.device)

        self.peaks = [
            PeakState(loss, intens, mask, self.support,
                      trunc_rec_support=trunc_rec_support, dtype=self.complex_dtype)
            for intens, mask in zip(intensities, rec_supports)
        ]
        for peak in self.peaks:
            peak.core.chunk_size = chunk_size

        self._active = self.random_peak_index()

        self.geometry = None
        if rotations is not None or high_strain:
            self.geometry = SampleGeometry(shape, rotations, len(self.peaks), dtype=dtype, device=self.device)
            self.geometry.program(self.active_peak.core, self._active)
        self.active_peak.initialize_from_support()

    def _validate(self, intensities, g_vecs, rec_supports, rotations):
        if intensities is None or len(intensities) == 0:
            raise ValueError("intensities must contain at least one peak.")
        n = len(intensities)

        intensities = [torch.as_tensor(i, dtype=self.dtype, device=self.device) for i in intensities]
        shape = tuple(intensities[0].shape)
        if len(shape) != 3:
            raise ValueError(f"Each intensity must be a 3D volume, got shape {shape}.")
        for k, intens in enumerate(intensities):
            if tuple(intens.shape) != shape:
                raise ValueError(f"Intensity {k} has shape {tuple(intens.shape)}, expected {shape}.")
            if torch.any(intens < 0):
                raise ValueError(f"Intensity {k} contains negative values.")

        if g_vecs is None or len(g_vecs) != n:
            raise ValueError(f"Expected {n} g-vectors, got {0 if g_vecs is None else len(g_vecs)}.")
        checked_g = []
        for k, g in enumerate(g_vecs):
            g = torch.as_tensor(g, dtype=self.dtype, device=self.device).flatten()
            if g.shape != (3,):
                raise ValueError(f"g-vector {k} must have 3 components, got shape {tuple(g.shape)}.")
            if torch.dot(g, g) == 0:
                raise ValueError(f"g-vector {k} is zero.")
            checked_g.append(g)

        if rec_supports is None:
            rec_supports = [torch.ones(shape, dtype=torch.bool, device=self.device) for _ in range(n)]
        if len(rec_supports) != n:
            raise ValueError(f"Expected {n} reciprocal masks, got {len(rec_supports)}.")
        masks = []
        for k, m in enumerate(rec_supports):
            m = torch.as_tensor(m, device=self.device).to(torch.bool)
            if tuple(m.shape) != shape:
                raise ValueError(f"Reciprocal mask {k} has shape {tuple(m.shape)}, expected {shape}.")
            masks.append(m)

        if rotations is not None:
            if len(rotations) != n:
                raise ValueError(f"Expected {n} rotations, got {len(rotations)}.")
            rotations = [torch.as_tensor(r, dtype=self.dtype, device=self.device) for r in rotations]
            for k, r in enumerate(rotations):
                if r.shape != (3, 3):
                    raise ValueError(f"Rotation {k} must be 3x3, got shape {tuple(r.shape)}.")

        return intensities, checked_g, masks, rotations

    @property
    def num_peaks(self) -> int:
        return len(self.peaks)

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.rho.shape)

    @property
    def active_index(self) -> int:
        """Index (0-based) of the mounted peak."""
        return self._active

    @property
    def active_peak(self) -> PeakState:
        return self.peaks[self._active]

    @property
    def active_g_vec(self) -> torch.Tensor:
        return self.g_vecs[self._active]

    def random_peak_index(self) -> int:
        """Uniform draw from ``[0, num_peaks)`` using the state's generator."""
        return int(torch.randint(len(self.peaks), (1,), generator=self.generator).item())

    def g_dot_u(self, g: torch.Tensor) -> torch.Tensor:
        """Projection ``g.u`` of the shared displacement field on a reciprocal vector."""
        return g[0] * self.ux + g[1] * self.uy + g[2] * self.uz

    def _mount_peak(self, index: int):
        # Only Mount switches peaks; the new peak's core gets its sample geometry.
        if not 0 <= index < len(self.peaks):
            raise IndexError(f"Peak index {index} out of range for {len(self.peaks)} peaks.")
        self._active = index
        if self.geometry is not None:
            self.geometry.program(self.peaks[index].core, index)
