"""Angle, support and centering helpers shared by the single- and multi-peak code."""

import math

import numpy as np
import scipy.ndimage
import torch

AMPLITUDE_EPSILON = 1e-6


def angle_difference(angle1, angle2):
    """
    Signed difference ``angle1 - angle2`` moved into ``(-pi, pi]``.

    Returns the representative ``diff - 2*pi*k`` of smallest magnitude. For inputs
    within one turn of each other this is the choice among ``diff``,
    ``diff - 2*pi`` and ``diff + 2*pi``; a tie at ``-pi`` resolves to ``+pi``.

    Args:
        angle1 (float | torch.Tensor): Angle(s) in radians.
        angle2 (float | torch.Tensor): Reference angle(s) in radians. Broadcast against angle1.

    Returns:
        float | torch.Tensor: The wrapped difference, a float if both inputs are scalars.
    """
    if not isinstance(angle1, torch.Tensor) and not isinstance(angle2, torch.Tensor):
        diff = float(angle1) - float(angle2)
        return diff - 2 * math.pi * math.ceil((diff - math.pi) / (2 * math.pi))

    like = angle1 if isinstance(angle1, torch.Tensor) else angle2
    dtype = like.dtype if like.is_floating_point() else torch.get_default_dtype()
    diff = (torch.as_tensor(angle1, dtype=dtype, device=like.device)
            - torch.as_tensor(angle2, dtype=dtype, device=like.device))
    return diff - 2 * math.pi * torch.ceil((diff - math.pi) / (2 * math.pi))


def min_diff_angle(value, angle2):
    """
    Phase of ``value`` relative to ``angle2``, zero where the phase is undefined.

    Voxels with ``|value| < 1e-6`` carry no usable phase and give 0 regardless of
    ``angle2``.

    Args:
        value (complex | torch.Tensor): Complex value(s) whose phase is compared.
        angle2 (float | torch.Tensor): Target angle(s) in radians.

    Returns:
        float | torch.Tensor: Wrapped phase difference.
    """
    if not isinstance(value, torch.Tensor) and not isinstance(angle2, torch.Tensor):
        if abs(value) < AMPLITUDE_EPSILON:
            return 0.0
        return angle_difference(float(np.angle(value)), angle2)

    value = torch.as_tensor(value)
    diff = angle_difference(torch.angle(value), angle2)
    return torch.where(value.abs() < AMPLITUDE_EPSILON, torch.zeros_like(diff), diff)


def circular_center_of_mass(weights: torch.Tensor) -> tuple[float, ...]:
    """
    Centre of mass of a non-negative volume on a periodic grid.

    Each axis is treated as a circle: the centre is the angle of the first Fourier
    coefficient of the marginal along that axis, mapped back to ``[0, N)``. This is
    the centre in the Fourier sense used for centering peaks and reconstructions.

    Returns:
        tuple[float, ...]: One coordinate per axis. Zeros for an all-zero volume.
    """
    weights = weights.to(torch.float64)
    centers = []
    for dim, n in enumerate(weights.shape):
        other_dims = tuple(d for d in range(weights.ndim) if d != dim)
        marginal = weights.sum(dim=other_dims) if other_dims else weights
        phases = torch.exp(2j * math.pi * torch.arange(n, dtype=torch.float64, device=weights.device) / n)
        first = torch.sum(marginal * phases)
        if first.abs() < AMPLITUDE_EPSILON:
            centers.append(0.0)
            continue
        centers.append((torch.angle(first).item() * n / (2 * math.pi)) % n)
    return tuple(centers)


def centering_shift(weights: torch.Tensor) -> tuple[int, ...]:
    """Integer roll that brings the periodic centre of mass of ``weights`` to index 0."""
    shifts = []
    for c, n in zip(circular_center_of_mass(weights), weights.shape):
        s = -int(round(c))
        # keep the shift in [-n/2, n/2)
        s = (s + n // 2) % n - n // 2
        shifts.append(s)
    return tuple(shifts)


def center_intensity(intensity: torch.Tensor, rec_support: torch.Tensor | None = None):
    """
    Rolls a measured peak so its centre of mass sits on the zero frequency.

    Args:
        intensity (torch.Tensor): Measured intensity, unshifted FFT ordering.
        rec_support (torch.Tensor, optional): Mask rolled by the same amount.

    Returns:
        tuple: (centered_intensity, centered_rec_support, shifts). The mask entry is
        None when no mask was given.
    """
    shifts = centering_shift(intensity)
    dims = tuple(range(intensity.ndim))
    centered = torch.roll(intensity, shifts=shifts, dims=dims)
    if rec_support is not None:
        rec_support = torch.roll(rec_support, shifts=shifts, dims=dims)
    return centered, rec_support, shifts


def support_from_intensity(intensity: torch.Tensor, threshold: float = 0.1) -> torch.Tensor:
    """
    Initial support guess from a measured peak.

    The inverse FFT of the intensity is the autocorrelation of the object, whose
    extent bounds the object's own. Everything above ``threshold`` times the
    maximum magnitude is kept.

    Args:
        intensity (torch.Tensor): Measured 3D intensity.
        threshold (float): Fraction of the maximum magnitude. Defaults to 0.1.

    Returns:
        torch.Tensor: Boolean support, same shape as the intensity.
    """
    inv = torch.fft.ifftn(intensity.to(torch.complex128))
    mag = torch.abs(inv)
    max_val = torch.max(mag)
    if max_val == 0:
        return torch.zeros(intensity.shape, dtype=torch.bool, device=intensity.device)
    return mag > threshold * max_val


def gaussian_blur(volume: torch.Tensor, sigma: float) -> torch.Tensor:
    """Periodic Gaussian blur of a real volume, returned on the input's device and dtype."""
    if sigma <= 0:
        raise ValueError(f"sigma must be positive, got {sigma}.")
    blurred = scipy.ndimage.gaussian_filter(volume.detach().cpu().numpy(), sigma=sigma, mode='wrap')
    return torch.from_numpy(blurred).to(device=volume.device, dtype=volume.dtype)
