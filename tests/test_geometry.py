import math
import unittest

import torch

from bcdistrain.geometry import SampleGeometry, reciprocal_grid, rotate_coordinates
from bcdistrain.nufft import NonUniformPlan
from bcdistrain.simulation import rotation_matrix
from bcdistrain.single_peak import FourierCore

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestReciprocalGrid(unittest.TestCase):

    def test_shape_and_range(self):
        grid = reciprocal_grid((4, 6, 5), device=DEVICE)
        self.assertEqual(grid.shape, (3, 4 * 6 * 5))
        self.assertTrue(torch.all(grid >= -math.pi))
        self.assertTrue(torch.all(grid < math.pi))
        # first sample is the zero frequency
        torch.testing.assert_close(grid[:, 0], torch.zeros(3, dtype=torch.float64, device=DEVICE))

    def test_rejects_non_3d(self):
        with self.assertRaises(ValueError):
            reciprocal_grid((4, 4))

    def test_rotate_coordinates(self):
        coords = torch.tensor([[1.0], [0.0], [0.0]], dtype=torch.float64)
        rot = rotation_matrix((0, 0, 1), math.pi / 2)
        out = rotate_coordinates(coords, rot)
        torch.testing.assert_close(out.flatten(), torch.tensor([0.0, 1.0, 0.0], dtype=torch.float64))
        with self.assertRaises(ValueError):
            rotate_coordinates(coords, torch.eye(2))


class TestSampleGeometry(unittest.TestCase):

    def setUp(self):
        self.shape = (8, 8, 8)

    def test_identity_keeps_everything(self):
        geom = SampleGeometry(self.shape, None, num_peaks=2, device=DEVICE)
        self.assertEqual(len(geom), 2)
        self.assertEqual(geom.keep_ind.numel(), 512)
        x, y, z = geom.points(1)
        self.assertEqual(x.shape, (512,))

    def test_rotation_drops_corner_samples(self):
        rot = rotation_matrix((0, 0, 1), math.pi / 6)
        geom = SampleGeometry(self.shape, [torch.eye(3, dtype=torch.float64), rot], num_peaks=2, device=DEVICE)
        n_kept = geom.keep_ind.numel()
        self.assertLess(n_kept, 512)
        self.assertGreater(n_kept, 0)
        for k in range(2):
            x, y, z = geom.points(k)
            for c in (x, y, z):
                self.assertTrue(torch.all(c.abs() <= math.pi))
                self.assertEqual(c.shape, (n_kept,))

    def test_exclusion_by_any_peak(self):
        rot = rotation_matrix((0, 0, 1), math.pi / 6)
        only_rotated = SampleGeometry(self.shape, [rot], num_peaks=1, device=DEVICE)
        mixed = SampleGeometry(self.shape, [torch.eye(3, dtype=torch.float64), rot], num_peaks=2, device=DEVICE)
        self.assertTrue(torch.equal(only_rotated.keep_ind, mixed.keep_ind))

    def test_rotation_count_must_match(self):
        with self.assertRaises(ValueError):
            SampleGeometry(self.shape, [torch.eye(3)], num_peaks=2)

    def test_program_core(self):
        rot = rotation_matrix((1, 1, 0), 0.4)
        geom = SampleGeometry(self.shape, [rot], num_peaks=1, device=DEVICE)
        intens = torch.rand(self.shape, dtype=torch.float64, device=DEVICE)
        core = FourierCore(intens, torch.ones(self.shape, dtype=torch.bool, device=DEVICE))
        geom.program(core, 0)
        self.assertIsInstance(core.plan, NonUniformPlan)
        self.assertEqual(core.intens.shape, (geom.keep_ind.numel(),))
        torch.testing.assert_close(core.intens, intens.flatten()[geom.keep_ind])
        self.assertEqual(core.rec_support.shape, core.intens.shape)


if __name__ == '__main__':
    unittest.main()
