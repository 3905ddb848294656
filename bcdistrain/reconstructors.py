"""Iteration driver for multi-peak reconstructions."""

from typing import Callable, Optional

import torch

from bcdistrain.operators import ER, HIO, Center, Mount, Operator, Shrink
from bcdistrain.state import State


def fourier_error(state: State) -> float:
    """
    Normalised reciprocal-space error of the mounted peak.

    ``sqrt( sum_mask (|R| - sqrt(I))^2 / sum_mask I )`` with ``R`` the forward
    transform of the current real-space estimate. Returns 0 for an all-zero
    measurement.
    """
    peak = state.active_peak
    recip = peak.core.forward(peak.real_space)
    mask = peak.core.rec_support
    measured = torch.sqrt(peak.core.intens)
    total = torch.sum(peak.core.intens[mask])
    if total == 0:
        return 0.0
    mismatch = torch.sum(((torch.abs(recip) - measured) ** 2)[mask])
    return torch.sqrt(mismatch / total).item()


def default_schedule(recip_lattice,
                     hio_beta: float = 0.9,
                     hio_iterations: int = 40,
                     er_iterations: int = 10,
                     shrink_threshold: float = 0.1,
                     shrink_sigma: float = 1.0,
                     mount_beta: float = 0.5) -> Operator:
    """
    One outer iteration: HIO, then ER, then shrinkwrap, centering and a Mount.
    """
    return (Mount(mount_beta, recip_lattice)
            * Center()
            * Shrink(shrink_threshold, shrink_sigma)
            * ER() ** er_iterations
            * HIO(hio_beta) ** hio_iterations)


class MultiPeakReconstructor:
    """
    Repeatedly applies an operator schedule to a State.

    Args:
        schedule: Operator (usually an OperatorList) making up one iteration.
        iterations: Number of times the schedule is applied.
        verbose: If True, print the mounted peak and its Fourier error after
            every iteration.
        log_fn: Optional callback ``fn(iteration, state, error)`` called after every
            iteration.
    """

    def __init__(self,
                 schedule: Operator,
                 iterations: int = 10,
                 verbose: bool = False,
                 log_fn: Optional[Callable[[int, State, float], None]] = None):
        if not isinstance(schedule, Operator):
            raise TypeError("schedule must be an Operator.")
        if iterations < 0:
            raise ValueError(f"iterations must be non-negative, got {iterations}.")
        self.schedule = schedule
        self.iterations = iterations
        self.verbose = verbose
        self.log_fn = log_fn
        self.history: list[float] = []

    def reconstruct(self, state: State) -> State:
        """Runs the schedule ``iterations`` times on ``state`` (in place) and returns it."""
        if self.verbose:
            print(f"Starting multi-peak reconstruction: {self.iterations} iterations, {state.num_peaks} peaks.")

        for i in range(self.iterations):
            self.schedule(state)
            # error is only computed when someone consumes it
            if self.verbose or self.log_fn is not None:
                error = fourier_error(state)
                self.history.append(error)
                if self.verbose:
                    print(f"Iter {i + 1}/{self.iterations}, peak {state.active_index}, Fourier error: {error:.4e}")
                if self.log_fn is not None:
                    self.log_fn(i, state, error)
        return state
