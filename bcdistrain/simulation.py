import math

import torch


def make_crystal(shape: tuple[int, int, int], radius: float, center=None, dtype=torch.float64, device='cpu') -> torch.Tensor:
    """ Spherical crystal of unit density. Center defaults to the middle of the volume. """
    if center is None:
        center = tuple(n // 2 for n in shape)
    axes = [torch.arange(n, dtype=dtype, device=device) for n in shape]
    xx, yy, zz = torch.meshgrid(*axes, indexing='ij')
    r2 = (xx - center[0]) ** 2 + (yy - center[1]) ** 2 + (zz - center[2]) ** 2
    return (r2 <= radius ** 2).to(dtype)


def make_displacement(shape: tuple[int, int, int], amplitude: float = 0.3, dtype=torch.float64, device='cpu'):
    """ Smooth synthetic displacement field (ux, uy, uz), one slow sine per axis. """
    axes = [torch.arange(n, dtype=dtype, device=device) for n in shape]
    xx, yy, zz = torch.meshgrid(*axes, indexing='ij')
    ux = amplitude * torch.sin(2 * math.pi * yy / shape[1])
    uy = amplitude * torch.sin(2 * math.pi * zz / shape[2])
    uz = amplitude * torch.sin(2 * math.pi * xx / shape[0])
    return ux, uy, uz


def simulate_intensities(rho: torch.Tensor, ux: torch.Tensor, uy: torch.Tensor, uz: torch.Tensor, g_vecs) -> list[torch.Tensor]:
    """
    Bragg intensities ``|FFT(rho * exp(-1j g.u))|^2`` (orthonormal FFT), one per g-vector.
    """
    intensities = []
    for g in g_vecs:
        g = torch.as_tensor(g, dtype=rho.dtype, device=rho.device)
        obj = rho * torch.exp(-1j * (g[0] * ux + g[1] * uy + g[2] * uz))
        intensities.append(torch.abs(torch.fft.fftn(obj, norm='ortho')) ** 2)
    return intensities


def cubic_recip_lattice(a: float = 1.0, dtype=torch.float64) -> torch.Tensor:
    """ Primitive reciprocal lattice of a simple cubic crystal with lattice constant a (rows). """
    return (2 * math.pi / a) * torch.eye(3, dtype=dtype)


def rotation_matrix(axis, angle: float, dtype=torch.float64) -> torch.Tensor:
    """ Rodrigues rotation about ``axis`` by ``angle`` radians. """
    axis = torch.as_tensor(axis, dtype=dtype)
    x, y, z = (axis / torch.linalg.norm(axis)).tolist()
    k = torch.tensor([[0.0, -z, y],
                      [z, 0.0, -x],
                      [-y, x, 0.0]], dtype=dtype)
    return torch.eye(3, dtype=dtype) + math.sin(angle) * k + (1 - math.cos(angle)) * (k @ k)
