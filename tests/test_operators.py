import math
import unittest

import torch

from bcdistrain import ER, HIO, Center, Mount, Operator, OperatorList, Shrink, State, operate
from bcdistrain.simulation import cubic_recip_lattice

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


def _cube_state(n_peaks=1, seed=0, shape=(8, 8, 8), lo=3, hi=6):
    obj = torch.zeros(shape, dtype=torch.complex128, device=DEVICE)
    obj[lo:hi, lo:hi, lo:hi] = 1.0
    intens = torch.abs(torch.fft.fftn(obj, norm='ortho')) ** 2
    support = obj.real > 0
    g_vecs = [[2 * math.pi, 0.0, 0.0], [0.0, 2 * math.pi, 0.0], [0.0, 0.0, 2 * math.pi]][:n_peaks]
    masks = [torch.ones(shape, dtype=torch.bool, device=DEVICE) for _ in g_vecs]
    gen = torch.Generator().manual_seed(seed)
    state = State([intens] * n_peaks, g_vecs, masks, support=support,
                  center_peaks=False, generator=gen, device=DEVICE)
    return state, obj


class TestComposition(unittest.TestCase):

    def test_product_runs_right_operand_first(self):
        er, hio = ER(), HIO(0.9)
        combined = er * hio
        self.assertIsInstance(combined, OperatorList)
        self.assertEqual(combined.ops, [hio, er])

    def test_product_matches_separate_calls(self):
        state_a, _ = _cube_state()
        state_b, _ = _cube_state()
        # start away from the fixed point so both steps do something
        for state in (state_a, state_b):
            state.active_peak.real_space.mul_(0.5)
            state.active_peak.real_space[0, 0, 0] = 0.3

        (ER() * HIO(0.9)) * state_a
        HIO(0.9) * state_b
        ER() * state_b
        torch.testing.assert_close(state_a.active_peak.real_space, state_b.active_peak.real_space)

    def test_power_repeats_the_same_operator(self):
        hio = HIO(0.8)
        repeated = hio ** 4
        self.assertIsInstance(repeated, OperatorList)
        self.assertEqual(len(repeated), 4)
        self.assertTrue(all(op is hio for op in repeated.ops))
        self.assertEqual(len(hio ** 0), 0)

    def test_power_argument_checks(self):
        with self.assertRaises(ValueError):
            ER() ** -1
        with self.assertRaises(TypeError):
            ER() ** 1.5

    def test_mul_returns_state(self):
        state, _ = _cube_state()
        self.assertIs(ER() * state, state)
        self.assertIs(ER()(state), state)
        self.assertIs(operate(ER(), state), state)

    def test_mul_with_other_type(self):
        with self.assertRaises(TypeError):
            ER() * 3

    def test_operate_unknown(self):
        state, _ = _cube_state()
        with self.assertRaises(TypeError):
            operate(object(), state)

    def test_operator_list_checks_members(self):
        with self.assertRaises(TypeError):
            OperatorList([ER(), "HIO"])

    def test_nested_lists_apply_in_order(self):
        calls = []

        class Probe(Operator):
            def __init__(self, name):
                self.name = name

        @operate.register
        def _(op: Probe, state):
            calls.append(op.name)
            return state

        a, b, c = Probe('a'), Probe('b'), Probe('c')
        state, _ = _cube_state()
        (c * b * a) * state
        (c * (b * a) ** 2) * state
        self.assertEqual(calls, ['a', 'b', 'c', 'a', 'b', 'a', 'b', 'c'])


class TestPeakOperators(unittest.TestCase):

    def test_er_and_hio_preserve_support_type(self):
        state, _ = _cube_state()
        for op in (ER(), HIO(0.9)):
            op * state
            self.assertEqual(state.support.dtype, torch.bool)
            self.assertEqual(state.support.shape, (8, 8, 8))
            self.assertIs(state.active_peak.support, state.support)

    def test_single_peak_er_then_mount_recovers_density(self):
        state, obj = _cube_state()
        ER() * state
        Mount(0.5, cubic_recip_lattice()) * state
        torch.testing.assert_close(state.rho, obj.real, rtol=1e-9, atol=1e-9)
        for field in (state.ux, state.uy, state.uz):
            torch.testing.assert_close(field, torch.zeros_like(field), rtol=0, atol=1e-9)
        on_support = state.active_peak.real_space[state.support]
        torch.testing.assert_close(torch.angle(on_support), torch.zeros_like(on_support.real), rtol=0, atol=1e-9)

    def test_shrink_uses_peak_mounted_at_application(self):
        state, _ = _cube_state(n_peaks=2)
        shrink = Shrink(0.1, 1.0)
        first = state.active_index
        other = 1 - first
        state.support.fill_(True)
        state.peaks[first].real_space.zero_()
        state.peaks[first].real_space[1, 1, 1] = 1.0
        state.peaks[other].real_space.zero_()
        state.peaks[other].real_space[6, 6, 6] = 1.0

        state._mount_peak(other)
        shrink * state
        self.assertTrue(state.support[6, 6, 6].item())
        self.assertFalse(state.support[1, 1, 1].item())

    def test_center_rolls_shared_fields(self):
        state, _ = _cube_state()
        state.rho.copy_(state.support.to(torch.float64) * 2.0)
        state.ux.copy_(state.support.to(torch.float64) * 0.1)
        Center() * state
        self.assertTrue(state.support[0, 0, 0].item())
        torch.testing.assert_close(state.rho, state.support.to(torch.float64) * 2.0)
        torch.testing.assert_close(state.ux, state.support.to(torch.float64) * 0.1)
        self.assertIs(state.active_peak.support, state.support)


if __name__ == '__main__':
    unittest.main()
