"""Fourier transform plans used by the single-peak engine.

Two plans share one interface:

- ``GridFFTPlan``: orthonormal ``fftn``/``ifftn`` on the regular grid.
- ``NonUniformPlan``: direct non-uniform DFT evaluated at continuous angular
  frequencies ``(x, y, z)``, one sample per measured point. With the unrotated
  grid coordinates it reproduces ``GridFFTPlan`` exactly (up to flattening).

``forward`` stores its output in ``plan.recip_space`` as well as returning it.

``NonUniformPlan`` is exact, not gridded: each transform costs O(M * N) for M
samples on an N-voxel grid. That is fine up to roughly 64^3 volumes; at 128^3
with a full set of samples a single transform is ~4e12 complex multiply-adds,
so rotated or high-strain runs at that size are impractical.
"""

import abc
import math

import torch

# Samples times voxels above which NonUniformPlan prints a cost warning (~64^3 squared).
DIRECT_NDFT_WARN_SIZE = 2 ** 36


class FourierPlan(abc.ABC):
    def __init__(self, image_shape: tuple[int, ...]):
        self.image_shape = tuple(image_shape)
        self.recip_space = None

    @abc.abstractmethod
    def forward(self, image_data: torch.Tensor) -> torch.Tensor:
        """Real space -> reciprocal samples. Result is kept in ``self.recip_space``."""
        pass

    @abc.abstractmethod
    def inverse(self, recip_data: torch.Tensor) -> torch.Tensor:
        """Reciprocal samples -> real-space grid of ``self.image_shape``."""
        pass

    def __mul__(self, image_data):
        return self.forward(image_data)


class GridFFTPlan(FourierPlan):
    def forward(self, image_data: torch.Tensor) -> torch.Tensor:
        if tuple(image_data.shape) != self.image_shape:
            raise ValueError(f"Input shape {tuple(image_data.shape)} does not match plan shape {self.image_shape}.")
        self.recip_space = torch.fft.fftn(image_data, norm='ortho')
        return self.recip_space

    def inverse(self, recip_data: torch.Tensor) -> torch.Tensor:
        if tuple(recip_data.shape) != self.image_shape:
            raise ValueError(f"Input shape {tuple(recip_data.shape)} does not match plan shape {self.image_shape}.")
        return torch.fft.ifftn(recip_data, norm='ortho')


class NonUniformPlan(FourierPlan):
    """
    Direct (exact) non-uniform DFT on a 3D grid.

    Voxel ``(a, b, c)`` sits at integer position ``(a, b, c)``; sample ``k`` at angular
    frequency ``(x_k, y_k, z_k)``. The forward transform is

        R[k] = N^-1/2 * sum_abc f[a,b,c] * exp(-i (x_k a + y_k b + z_k c))

    and ``inverse`` is its adjoint. The kernel is separable per axis, so each chunk
    of samples costs three small contractions instead of a dense (M, N) matrix,
    but the total work is still O(M * N) per transform. A warning is printed when
    ``M * N`` exceeds ``DIRECT_NDFT_WARN_SIZE``.

    Args:
        image_shape: Shape (nx, ny, nz) of the real-space grid.
        x, y, z: Sample coordinates, 1D tensors of equal length, in radians.
        chunk_size: Number of samples transformed at once.
    """
    def __init__(self,
                 image_shape: tuple[int, int, int],
                 x: torch.Tensor,
                 y: torch.Tensor,
                 z: torch.Tensor,
                 chunk_size: int = 4096):
        super().__init__(image_shape)
        if len(self.image_shape) != 3:
            raise ValueError(f"NonUniformPlan requires a 3D image shape, got {self.image_shape}.")
        if not (x.ndim == y.ndim == z.ndim == 1) or not (x.shape == y.shape == z.shape):
            raise ValueError("x, y and z must be 1D tensors of the same length.")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}.")
        self.x = x
        self.y = y
        self.z = z
        self.chunk_size = chunk_size
        self.num_samples = x.shape[0]
        self.scale = 1.0 / math.sqrt(math.prod(self.image_shape))
        cost = self.num_samples * math.prod(self.image_shape)
        if cost > DIRECT_NDFT_WARN_SIZE:
            print(f"Warning: direct NDFT with {self.num_samples} samples on a {self.image_shape} grid "
                  f"costs {cost:.2e} multiply-adds per transform.")

    def _kernels(self, start: int, stop: int, complex_dtype: torch.dtype):
        nx, ny, nz = self.image_shape
        device = self.x.device
        real_dtype = self.x.dtype
        ex = torch.exp(-1j * self.x[start:stop, None] * torch.arange(nx, dtype=real_dtype, device=device)[None, :])
        ey = torch.exp(-1j * self.y[start:stop, None] * torch.arange(ny, dtype=real_dtype, device=device)[None, :])
        ez = torch.exp(-1j * self.z[start:stop, None] * torch.arange(nz, dtype=real_dtype, device=device)[None, :])
        return ex.to(complex_dtype), ey.to(complex_dtype), ez.to(complex_dtype)

    def forward(self, image_data: torch.Tensor) -> torch.Tensor:
        if tuple(image_data.shape) != self.image_shape:
            raise ValueError(f"Input shape {tuple(image_data.shape)} does not match plan shape {self.image_shape}.")
        if not image_data.is_complex():
            image_data = image_data.to(torch.complex128 if image_data.dtype == torch.float64 else torch.complex64)

        out = torch.empty(self.num_samples, dtype=image_data.dtype, device=image_data.device)
        for start in range(0, self.num_samples, self.chunk_size):
            stop = min(start + self.chunk_size, self.num_samples)
            ex, ey, ez = self._kernels(start, stop, image_data.dtype)
            t = torch.einsum('abc,ka->kbc', image_data, ex)
            t = torch.einsum('kbc,kb->kc', t, ey)
            out[start:stop] = torch.einsum('kc,kc->k', t, ez)
        self.recip_space = out * self.scale
        return self.recip_space

    def inverse(self, recip_data: torch.Tensor) -> torch.Tensor:
        if recip_data.shape != (self.num_samples,):
            raise ValueError(f"Expected {self.num_samples} reciprocal samples, got shape {tuple(recip_data.shape)}.")
        if not recip_data.is_complex():
            recip_data = recip_data.to(torch.complex128 if recip_data.dtype == torch.float64 else torch.complex64)

        out = torch.zeros(self.image_shape, dtype=recip_data.dtype, device=recip_data.device)
        for start in range(0, self.num_samples, self.chunk_size):
            stop = min(start + self.chunk_size, self.num_samples)
            ex, ey, ez = self._kernels(start, stop, recip_data.dtype)
            weighted = recip_data[start:stop, None] * ex.conj()
            out += torch.einsum('ka,kb,kc->abc', weighted, ey.conj(), ez.conj())
        return out * self.scale
