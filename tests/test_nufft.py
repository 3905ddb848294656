import io
import unittest
from contextlib import redirect_stdout
from unittest import mock

import torch

from bcdistrain.geometry import reciprocal_grid
from bcdistrain.nufft import GridFFTPlan, NonUniformPlan

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestGridFFTPlan(unittest.TestCase):

    def setUp(self):
        torch.manual_seed(0)
        self.shape = (6, 5, 4)
        self.image = torch.randn(self.shape, dtype=torch.complex128, device=DEVICE)
        self.plan = GridFFTPlan(self.shape)

    def test_forward_is_orthonormal_fft(self):
        recip = self.plan.forward(self.image)
        torch.testing.assert_close(recip, torch.fft.fftn(self.image, norm='ortho'))
        self.assertIs(self.plan.recip_space, recip)

    def test_mul_applies_forward(self):
        recip = self.plan * self.image
        torch.testing.assert_close(recip, torch.fft.fftn(self.image, norm='ortho'))

    def test_round_trip(self):
        back = self.plan.inverse(self.plan.forward(self.image))
        torch.testing.assert_close(back, self.image)

    def test_shape_mismatch(self):
        with self.assertRaises(ValueError):
            self.plan.forward(torch.zeros((6, 5, 5), dtype=torch.complex128, device=DEVICE))
        with self.assertRaises(ValueError):
            self.plan.inverse(torch.zeros((3,), dtype=torch.complex128, device=DEVICE))


class TestNonUniformPlan(unittest.TestCase):

    def setUp(self):
        torch.manual_seed(1)
        self.shape = (6, 5, 4)
        self.image = torch.randn(self.shape, dtype=torch.complex128, device=DEVICE)
        coords = reciprocal_grid(self.shape, device=DEVICE)
        # small chunks so several chunks are exercised
        self.plan = NonUniformPlan(self.shape, coords[0], coords[1], coords[2], chunk_size=7)

    def test_grid_coordinates_reproduce_fft(self):
        recip = self.plan.forward(self.image)
        expected = torch.fft.fftn(self.image, norm='ortho').flatten()
        torch.testing.assert_close(recip, expected, rtol=1e-9, atol=1e-9)
        self.assertIs(self.plan.recip_space, recip)

    def test_grid_inverse_reproduces_ifft(self):
        recip = torch.fft.fftn(self.image, norm='ortho')
        back = self.plan.inverse(recip.flatten())
        torch.testing.assert_close(back, self.image, rtol=1e-9, atol=1e-9)

    def test_inverse_is_adjoint(self):
        n = 50
        x = (torch.rand(n, dtype=torch.float64, device=DEVICE) - 0.5) * 6
        y = (torch.rand(n, dtype=torch.float64, device=DEVICE) - 0.5) * 6
        z = (torch.rand(n, dtype=torch.float64, device=DEVICE) - 0.5) * 6
        plan = NonUniformPlan(self.shape, x, y, z, chunk_size=16)
        r = torch.randn(n, dtype=torch.complex128, device=DEVICE)
        lhs = torch.vdot(plan.forward(self.image), r)
        rhs = torch.vdot(self.image.flatten(), plan.inverse(r).flatten())
        torch.testing.assert_close(lhs, rhs, rtol=1e-9, atol=1e-9)

    def test_real_input_is_promoted(self):
        recip = self.plan.forward(self.image.real)
        self.assertTrue(recip.is_complex())

    def test_cost_warning_above_threshold(self):
        coords = reciprocal_grid(self.shape, device=DEVICE)
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            NonUniformPlan(self.shape, coords[0], coords[1], coords[2])
        self.assertEqual(buffer.getvalue(), "")

        # 120 samples on 120 voxels
        with mock.patch('bcdistrain.nufft.DIRECT_NDFT_WARN_SIZE', 120 * 120 - 1):
            with redirect_stdout(buffer):
                NonUniformPlan(self.shape, coords[0], coords[1], coords[2])
        self.assertIn("Warning: direct NDFT", buffer.getvalue())

    def test_invalid_arguments(self):
        x = torch.zeros(3, dtype=torch.float64)
        with self.assertRaises(ValueError):
            NonUniformPlan((4, 4), x, x, x)
        with self.assertRaises(ValueError):
            NonUniformPlan(self.shape, x, x, torch.zeros(2, dtype=torch.float64))
        with self.assertRaises(ValueError):
            NonUniformPlan(self.shape, x, x, x, chunk_size=0)
        with self.assertRaises(ValueError):
            self.plan.inverse(torch.zeros(3, dtype=torch.complex128, device=DEVICE))


if __name__ == '__main__':
    unittest.main()
