"""Operators acting on a multi-peak State.

An operator mutates the State in place. Operators compose like matrices acting on
the state from the left:

    (op1 * op2) * state   # op2 runs first, then op1
    op ** 5               # five successive applications of op
    op * state            # apply, returns the state

The variant set is closed (OperatorList, ER, HIO, Shrink, Center, Mount) and is
dispatched by the single ``operate`` function.
"""

import functools
import math

import torch

from bcdistrain.single_peak import projections
from bcdistrain.state import State
from bcdistrain.utils import AMPLITUDE_EPSILON, min_diff_angle

DENSITY_EPSILON = 1e-6


class Operator:
    """Base of all operators: composition, repetition and application."""

    def __mul__(self, other):
        if isinstance(other, Operator):
            return OperatorList([other, self])
        if isinstance(other, State):
            operate(self, other)
            return other
        return NotImplemented

    def __pow__(self, power):
        if not isinstance(power, int) or isinstance(power, bool):
            return NotImplemented
        if power < 0:
            raise ValueError(f"Operator power must be non-negative, got {power}.")
        return OperatorList([self for _ in range(power)])

    def __call__(self, state: State) -> State:
        return operate(self, state)


class OperatorList(Operator):
    """Fixed sequence of operators applied in order."""

    def __init__(self, ops):
        ops = list(ops)
        for op in ops:
            if not isinstance(op, Operator):
                raise TypeError(f"OperatorList members must be Operators, got {type(op).__name__}.")
        self.ops = ops

    def __len__(self):
        return len(self.ops)

    def __repr__(self):
        return f"OperatorList({self.ops!r})"


class ER(Operator):
    """Error reduction on the mounted peak."""

    def __init__(self):
        self.er = projections.ER()

    def __repr__(self):
        return "ER()"


class HIO(Operator):
    """Hybrid input-output with feedback ``beta`` on the mounted peak."""

    def __init__(self, beta: float):
        self.hio = projections.HIO(beta)

    @property
    def beta(self):
        return self.hio.beta

    def __repr__(self):
        return f"HIO({self.beta})"


class Shrink(Operator):
    """
    Shrinkwrap of the shared support from the mounted peak.

    The mounted peak is looked up each time the operator is applied, so a Mount
    between construction and use is honoured.
    """

    def __init__(self, threshold: float, sigma: float):
        self.shrink = projections.Shrink(threshold, sigma)

    def __repr__(self):
        return f"Shrink({self.shrink.threshold}, {self.shrink.sigma})"


class Center(Operator):
    """
    Centers the mounted peak's support on the origin.

    The shared density and displacement fields are rolled with it so they stay
    aligned with the shared support.
    """

    def __init__(self):
        self.center = projections.Center()

    def __repr__(self):
        return "Center()"


class Mount(Operator):
    """
    Cross-peak projection and peak switch.

    Folds the mounted peak's reconstruction into the shared density and
    displacement, removes the reciprocal-lattice ambiguity of the displacement,
    mounts a randomly drawn peak and rebuilds its field from the shared object.

    Args:
        beta (float): Weight of the mounted peak's estimate when blending into the
            shared density and displacement (1 replaces, 0 keeps).
        recip_lattice (array-like): 3x3 matrix whose rows are the primitive
            reciprocal lattice vectors. Displacements ``u`` and ``u + 2*pi*A^-1 n``
            (integer ``n``) are indistinguishable and are folded onto the cell
            ``A u / 2pi`` in ``[-1/2, 1/2)``.
    """

    def __init__(self, beta: float, recip_lattice):
        if not 0 <= beta <= 1:
            raise ValueError(f"beta must be in [0, 1], got {beta}.")
        recip_lattice = torch.as_tensor(recip_lattice, dtype=torch.float64)
        if recip_lattice.shape != (3, 3):
            raise ValueError(f"recip_lattice must be 3x3, got shape {tuple(recip_lattice.shape)}.")
        if torch.linalg.det(recip_lattice).abs() < 1e-12:
            raise ValueError("recip_lattice is singular.")
        self.beta = beta
        self.recip_lattice = recip_lattice

    def __repr__(self):
        return f"Mount({self.beta})"


def _median(values: torch.Tensor) -> torch.Tensor:
    # mean of the two middle values for even counts
    ordered, _ = torch.sort(values.flatten())
    n = ordered.numel()
    if n % 2 == 1:
        return ordered[n // 2]
    return 0.5 * (ordered[n // 2 - 1] + ordered[n // 2])


@functools.singledispatch
def operate(op, state: State) -> State:
    """Applies ``op`` to ``state`` in place and returns the state."""
    raise TypeError(f"No operate rule for {type(op).__name__}.")


@operate.register
def _(op: OperatorList, state: State) -> State:
    for member in op.ops:
        operate(member, state)
    return state


@operate.register
def _(op: ER, state: State) -> State:
    op.er.operate(state.active_peak)
    return state


@operate.register
def _(op: HIO, state: State) -> State:
    op.hio.operate(state.active_peak)
    return state


@operate.register
def _(op: Shrink, state: State) -> State:
    op.shrink.operate(state.active_peak)
    return state


@operate.register
def _(op: Center, state: State) -> State:
    op.center.operate(state.active_peak)
    shifts = op.center.last_shifts
    if any(shifts):
        dims = tuple(range(state.rho.ndim))
        for field in (state.rho, state.ux, state.uy, state.uz):
            field.copy_(torch.roll(field, shifts=shifts, dims=dims))
    return state


@operate.register
def _(op: Mount, state: State) -> State:
    beta = op.beta
    peak = state.active_peak
    g = state.active_g_vec
    support = peak.support
    real_space = peak.real_space

    if not torch.any(support):
        raise ValueError("Mount needs a non-empty support.")

    # 1. amplitude scale of the mounted peak against the shared density
    amplitude = torch.abs(real_space)
    if torch.sum(state.rho) < DENSITY_EPSILON:
        beta = 1.0
        rsp_mul = 1.0
    else:
        denominator = torch.sum(amplitude[support] ** 2)
        if denominator == 0:
            raise ValueError("Mounted peak has zero amplitude on the support.")
        rsp_mul = (torch.sum(amplitude[support] * state.rho[support]) / denominator).item()

    # 2. blend the density, clear the displacement outside the support
    support_weight = support.to(state.dtype)
    real_space.mul_(support_weight * rsp_mul)
    state.rho.mul_((1.0 - beta) * support_weight)
    state.rho.add_(beta * torch.abs(real_space))
    for field in (state.ux, state.uy, state.uz):
        field.mul_(support)

    # 3. phase of the mounted peak onto u along g, up to a global offset
    delta = beta * min_diff_angle(real_space, -state.g_dot_u(g)) / torch.dot(g, g)
    amplitude_mask = torch.abs(real_space) > AMPLITUDE_EPSILON
    if torch.any(amplitude_mask):
        delta = (delta - _median(delta[amplitude_mask])) * amplitude_mask
        state.ux.sub_(delta * g[0])
        state.uy.sub_(delta * g[1])
        state.uz.sub_(delta * g[2])

    # 4. fold u onto one reciprocal-lattice cell
    lattice = op.recip_lattice.to(dtype=state.dtype, device=state.device)
    all_u = torch.stack((state.ux[support], state.uy[support], state.uz[support]))
    multiples = torch.floor(lattice @ all_u / (2 * math.pi) + 0.5)
    all_u = all_u - 2 * math.pi * torch.linalg.solve(lattice, multiples)
    state.ux[support] = all_u[0]
    state.uy[support] = all_u[1]
    state.uz[support] = all_u[2]

    # 5. mount a random peak
    state._mount_peak(state.random_peak_index())
    peak = state.active_peak
    g = state.active_g_vec

    # 6. rebuild its field and match it to its own measured magnitudes
    peak.real_space.copy_(state.rho * torch.exp(-1j * state.g_dot_u(g)))
    recip = peak.core.forward(peak.real_space)
    mask = peak.core.rec_support
    recip_amp = torch.abs(recip)
    numerator = torch.sum((torch.sqrt(peak.core.intens) * recip_amp)[mask])
    denominator = torch.sum((recip_amp ** 2)[mask])
    if denominator > 0:
        peak.real_space.mul_((numerator / denominator).item())
    return state
