"""Unit tests for the per-family formulas and the rotation transform."""
import math
import unittest

import torch

import torchbicop as tb
from torchbicop import AbstractBicop
from torchbicop.tools import swap_cols

# Fixed parameter sets for each family
_FAMILY_PARAMS = {
    "indep": [],
    "gaussian": [0.5],
    "student": [0.5, 4.0],
    "clayton": [2.0],
    "gumbel": [2.0],
    "frank": [5.0],
    "joe": [2.0],
    "bb1": [0.5, 1.5],
    "bb6": [2.0, 2.0],
    "bb7": [2.0, 1.0],
    "bb8": [3.0, 0.6],
}

_PARAMETRIC = [f for f in _FAMILY_PARAMS if f != "indep"]


def _uniform(n, seed, lo=0.02, hi=0.98):
    g = torch.Generator().manual_seed(seed)
    return torch.rand((n, 2), generator=g, dtype=torch.float64).clamp(lo, hi)


def _make(fam, rotation=0):
    params = _FAMILY_PARAMS[fam]
    return tb.create(fam, params if params else None, rotation)


class TestFamilyEvaluation(unittest.TestCase):
    """pdf/cdf/hfunc/hinv for every parametric family and rotation."""

    def test_pdf_positive_finite(self):
        u = _uniform(200, 1)
        for fam in _FAMILY_PARAMS:
            for rot in tb.ROTATIONS:
                with self.subTest(family=fam, rotation=rot):
                    pdf = _make(fam, rot).pdf(u)
                    self.assertEqual(pdf.shape, (200,))
                    self.assertTrue(torch.isfinite(pdf).all())
                    self.assertTrue((pdf > 0).all())

    def test_cdf_in_unit_interval(self):
        u = _uniform(200, 2)
        for fam in _FAMILY_PARAMS:
            for rot in tb.ROTATIONS:
                with self.subTest(family=fam, rotation=rot):
                    cdf = _make(fam, rot).cdf(u)
                    self.assertTrue((cdf >= 0).all() and (cdf <= 1).all())
                    # Frechet-Hoeffding bounds
                    lower = (u.sum(dim=1) - 1.0).clamp_min(0.0)
                    upper = u.min(dim=1).values
                    self.assertTrue((cdf >= lower - 1e-6).all() and (cdf <= upper + 1e-6).all())

    def test_hfunc_in_unit_interval(self):
        u = _uniform(200, 3)
        for fam in _FAMILY_PARAMS:
            for rot in tb.ROTATIONS:
                with self.subTest(family=fam, rotation=rot):
                    c = _make(fam, rot)
                    for h in (c.hfunc1(u), c.hfunc2(u)):
                        self.assertTrue((h >= 0).all() and (h <= 1).all())

    def test_hinv_roundtrip(self):
        u = _uniform(200, 4, 0.05, 0.95)
        for fam in _FAMILY_PARAMS:
            for rot in tb.ROTATIONS:
                with self.subTest(family=fam, rotation=rot):
                    c = _make(fam, rot)
                    w1 = torch.stack([u[:, 0], c.hfunc1(u)], dim=1)
                    self.assertLess((c.hinv1(w1) - u[:, 1]).abs().max().item(), 1e-3)
                    w2 = torch.stack([c.hfunc2(u), u[:, 1]], dim=1)
                    self.assertLess((c.hinv2(w2) - u[:, 0]).abs().max().item(), 1e-3)

    def test_hfunc1_matches_cdf_derivative(self):
        u = _uniform(50, 5, 0.1, 0.9)
        eps = 1e-5
        du = torch.tensor([eps, 0.0], dtype=torch.float64)
        # The Student-t cdf is itself a quadrature; differencing it amplifies the rule error.
        for fam in [f for f in _PARAMETRIC if f != "student"]:
            for rot in (0, 90):
                with self.subTest(family=fam, rotation=rot):
                    c = _make(fam, rot)
                    fd = (c.cdf(u + du) - c.cdf(u - du)) / (2 * eps)
                    self.assertLess((fd - c.hfunc1(u)).abs().max().item(), 1e-3)

    def test_simulate_shape_and_range(self):
        for fam in _FAMILY_PARAMS:
            with self.subTest(family=fam):
                sim = _make(fam).simulate(300, seeds=[1, 2])
                self.assertEqual(sim.shape, (300, 2))
                self.assertTrue(((sim >= 0) & (sim <= 1)).all())

    def test_simulate_seeded(self):
        c = _make("clayton")
        self.assertTrue(torch.equal(c.simulate(50, seeds=[7]), c.simulate(50, seeds=[7])))

    def test_unsupported_input(self):
        c = _make("gaussian")
        with self.assertRaises(tb.InvalidInput):
            c.pdf(torch.rand(10, 3, dtype=torch.float64))
        with self.assertRaises(tb.InvalidInput):
            c.hfunc1(torch.tensor([[0.5, 1.5]], dtype=torch.float64))
        with self.assertRaises(tb.InvalidInput):
            c.cdf(torch.tensor([[float("nan"), 0.5]], dtype=torch.float64))


# Parameters at or next to the edges of each family's box.
_BOX_CORNERS = [
    ("gaussian", [0.95]), ("gaussian", [-0.95]),
    ("student", [0.9, 2.5]), ("student", [0.3, 50.0]),
    ("clayton", [1e-10]), ("clayton", [28.0]),
    ("gumbel", [1.0]), ("gumbel", [50.0]),
    ("frank", [-35.0]), ("frank", [35.0]),
    ("joe", [1.0]), ("joe", [8.25]), ("joe", [30.0]),
    ("bb1", [1e-4, 1.0]), ("bb1", [7.0, 7.0]),
    ("bb6", [1.0, 1.0]), ("bb6", [6.0, 8.0]),
    ("bb7", [1.0, 0.01]), ("bb7", [6.0, 0.5]), ("bb7", [6.0, 25.0]),
    ("bb8", [1.0, 1e-4]), ("bb8", [8.0, 0.5]), ("bb8", [8.0, 1.0]),
]


class TestDensityNormalization(unittest.TestCase):
    """Conditional densities integrate to one, including at the parameter bounds."""

    n = 20000

    def _column(self, u1):
        v = (torch.arange(self.n, dtype=torch.float64) + 0.5) / self.n
        return torch.stack([torch.full_like(v, u1), v], dim=1)

    def _check(self, fam, params):
        c = tb.create(fam, params)
        for u1 in (0.25, 0.5, 0.75):
            u = self._column(u1)
            pdf = c.pdf(u)
            self.assertTrue(torch.isfinite(pdf).all())
            # Midpoint rule for int_0^1 c(u1, v) dv.
            self.assertAlmostEqual(pdf.mean().item(), 1.0, delta=1e-2)
            h = c.hfunc1(torch.tensor([[u1, 1e-9], [u1, 1.0 - 1e-9]], dtype=torch.float64))
            self.assertAlmostEqual(h[0].item(), 0.0, delta=1e-2)
            self.assertAlmostEqual(h[1].item(), 1.0, delta=1e-2)

    def test_moderate_parameters(self):
        for fam in _PARAMETRIC:
            with self.subTest(family=fam):
                self._check(fam, _FAMILY_PARAMS[fam])

    def test_box_corners(self):
        for fam, params in _BOX_CORNERS:
            with self.subTest(family=fam, parameters=params):
                self._check(fam, params)

    def test_strong_upper_tail_is_finite_near_one(self):
        u = torch.tensor([[1.0 - 1e-9, 1.0 - 1e-9], [1.0 - 1e-6, 1.0 - 2e-6], [0.999, 0.9995]],
                         dtype=torch.float64)
        for fam, params in _BOX_CORNERS:
            if fam not in tb.archimedean:
                continue
            with self.subTest(family=fam, parameters=params):
                c = tb.create(fam, params)
                self.assertTrue(torch.isfinite(c.pdf_raw(u)).all())
                cdf = c.cdf(u)
                self.assertTrue((cdf <= u.min(dim=1).values + 1e-9).all())


class TestSymmetryIdentities(unittest.TestCase):
    """hfunc2 / hinv2 in terms of the first conditional with swapped columns."""

    def test_raw_swap_identity(self):
        u = _uniform(100, 6)
        for fam in _PARAMETRIC:
            with self.subTest(family=fam):
                c = _make(fam)
                self.assertTrue(torch.equal(c.hfunc2_raw(u), c.hfunc1_raw(swap_cols(u))))
                self.assertTrue(torch.equal(c.hinv2_raw(u), c.hinv1_raw(swap_cols(u))))

    def test_public_swap_identity_unreflected_orientations(self):
        u = _uniform(100, 7)
        for fam in _FAMILY_PARAMS:
            for rot in (0, 180):
                with self.subTest(family=fam, rotation=rot):
                    c = _make(fam, rot)
                    self.assertTrue(torch.allclose(c.hfunc2(u), c.hfunc1(swap_cols(u)), atol=1e-12))
                    self.assertTrue(torch.allclose(c.hinv2(u), c.hinv1(swap_cols(u)), atol=1e-12))

    def test_public_swap_identity_with_flip(self):
        # Swapping the variables of a 90-degree copula gives the 270-degree one.
        u = _uniform(100, 8)
        for fam in _PARAMETRIC:
            for rot in (90, 270):
                with self.subTest(family=fam, rotation=rot):
                    c = _make(fam, rot)
                    flipped = c.copy()
                    flipped.flip()
                    self.assertTrue(torch.allclose(c.hfunc2(u), flipped.hfunc1(swap_cols(u)), atol=1e-10))
                    self.assertTrue(torch.allclose(c.hinv2(u), flipped.hinv1(swap_cols(u)), atol=1e-10))

    def test_flip_rotation(self):
        c = _make("clayton", 90)
        c.flip()
        self.assertEqual(c.rotation, 270)
        c.flip()
        self.assertEqual(c.rotation, 90)
        g = _make("gaussian", 90)
        g.flip()
        self.assertEqual(g.rotation, 90)

    def test_rotation_density_reflection(self):
        u = _uniform(100, 9)
        c0 = _make("gumbel", 0)
        for rot in (90, 180, 270):
            with self.subTest(rotation=rot):
                v = u.clone()
                if rot in (90, 180):
                    v[:, 0] = 1.0 - v[:, 0]
                if rot in (180, 270):
                    v[:, 1] = 1.0 - v[:, 1]
                self.assertTrue(torch.allclose(_make("gumbel", rot).pdf(u), c0.pdf(v)))


class TestTau(unittest.TestCase):
    """Kendall's tau and its inverse."""

    def test_gaussian_exact(self):
        c = tb.create("gaussian", [0.7])
        tau = c.parameters_to_tau()
        self.assertAlmostEqual(tau, 2.0 / math.pi * math.asin(0.7), places=12)
        self.assertAlmostEqual(c.tau_to_parameters(tau).item(), 0.7, places=12)

    def test_roundtrip(self):
        cases = {
            "gaussian": [-0.4],
            "student": [0.3, 6.0],
            "clayton": [3.0],
            "gumbel": [2.5],
            "frank": [-6.0],
            "joe": [3.0],
        }
        for fam, par in cases.items():
            with self.subTest(family=fam):
                c = tb.create(fam, par)
                back = c.tau_to_parameters(c.parameters_to_tau())
                self.assertLess((back - torch.tensor(par, dtype=torch.float64)).abs().max().item(), 1e-3)

    def test_closed_forms(self):
        self.assertAlmostEqual(tb.create("clayton", [2.0]).tau, 0.5, places=12)
        self.assertAlmostEqual(tb.create("gumbel", [4.0]).tau, 0.75, places=12)
        self.assertAlmostEqual(tb.create("bb1", [0.5, 2.0]).tau, 1.0 - 2.0 / 5.0, places=12)
        self.assertAlmostEqual(tb.create("joe", [1.0]).tau, 0.0, places=8)

    def test_numerical_tau_matches_one_parameter_limits(self):
        # BB6 with theta = 1 is Gumbel, BB7 with theta = 1 is Clayton.
        self.assertAlmostEqual(tb.create("bb6", [1.0, 2.0]).tau, 0.5, places=4)
        self.assertAlmostEqual(tb.create("bb7", [1.0, 2.0]).tau, 0.5, places=4)

    def test_frank_tau_odd(self):
        pos = tb.create("frank", [5.0]).tau
        neg = tb.create("frank", [-5.0]).tau
        self.assertGreater(pos, 0.0)
        self.assertAlmostEqual(pos, -neg, places=12)

    def test_rotated_tau_negative(self):
        for fam in ("clayton", "gumbel", "joe", "bb1"):
            for rot in tb.ROTATIONS:
                with self.subTest(family=fam, rotation=rot):
                    tau = _make(fam, rot).tau
                    if rot in (90, 270):
                        self.assertLess(tau, 0.0)
                    else:
                        self.assertGreater(tau, 0.0)

    def test_tau_to_parameters_clipped(self):
        c = tb.create("clayton")
        self.assertAlmostEqual(c.tau_to_parameters(0.999).item(), 28.0)
        c90 = tb.create("gumbel", rotation=90)
        self.assertAlmostEqual(c90.tau_to_parameters(-0.5).item(), 2.0, places=10)


class TestIndependence(unittest.TestCase):

    def test_density_is_one(self):
        u = _uniform(100, 10, 1e-6, 1 - 1e-6)
        c = tb.create("indep")
        self.assertTrue(torch.equal(c.pdf_raw(u), torch.ones(100, dtype=torch.float64)))
        self.assertTrue(torch.allclose(c.cdf(u), u[:, 0] * u[:, 1]))
        self.assertTrue(torch.allclose(c.hfunc1(u), u[:, 1]))
        self.assertEqual(c.npars, 0.0)
        self.assertEqual(c.tau, 0.0)

    def test_criteria_are_zero(self):
        u = _uniform(100, 11)
        c = tb.create("indep")
        self.assertEqual(c.loglik(u), 0.0)
        self.assertEqual(c.aic(u), 0.0)
        self.assertEqual(c.bic(u), 0.0)

    def test_gaussian_zero_correlation(self):
        u = _uniform(100, 12)
        c = tb.create("gaussian", [0.0])
        self.assertTrue(torch.allclose(c.pdf(u), torch.ones(100, dtype=torch.float64), atol=1e-12))
        self.assertTrue(torch.allclose(c.hfunc1(u), u[:, 1], atol=1e-12))


class TestGaussianBoundary(unittest.TestCase):

    def setUp(self):
        self.c = tb.create("gaussian", [0.5])

    def test_zero_coordinate(self):
        u = torch.tensor([[0.0, 0.3], [0.3, 0.0], [0.0, 0.0]], dtype=torch.float64)
        self.assertTrue(torch.equal(self.c.hfunc1(u), torch.zeros(3, dtype=torch.float64)))

    def test_non_finite_argument_clamped_by_sign(self):
        u = torch.tensor([[1.0, 0.5], [0.5, 1.0]], dtype=torch.float64)
        h = self.c.hfunc1(u)
        self.assertEqual(h[0].item(), 0.0)
        self.assertEqual(h[1].item(), 1.0)

    def test_no_nan_at_boundary(self):
        u = torch.tensor([[0.0, 1.0], [1.0, 0.0], [1.0, 1.0], [0.0, 0.5]], dtype=torch.float64)
        for out in (self.c.pdf(u), self.c.hfunc1(u), self.c.hfunc2(u), self.c.hinv1(u)):
            self.assertFalse(torch.isnan(out).any())


class TestTll(unittest.TestCase):

    def test_default_is_independence(self):
        u = _uniform(100, 13)
        c = tb.create("tll")
        self.assertTrue(torch.allclose(c.pdf(u), torch.ones(100, dtype=torch.float64), atol=1e-10))
        self.assertTrue(torch.allclose(c.hfunc1(u), u[:, 1], atol=1e-10))
        self.assertTrue(torch.allclose(c.hfunc2(u), u[:, 0], atol=1e-10))
        self.assertLess(abs(c.tau), 1e-10)

    def test_grid_validation(self):
        with self.assertRaises(tb.InvalidParameters):
            tb.create("tll", torch.ones(30, 29, dtype=torch.float64))
        bad = torch.ones(30, 30, dtype=torch.float64)
        bad[3, 4] = -1.0
        with self.assertRaises(tb.InvalidParameters):
            tb.create("tll", bad)

    def test_flip_transposes(self):
        g = torch.Generator().manual_seed(14)
        values = 0.5 + torch.rand((30, 30), generator=g, dtype=torch.float64)
        c = tb.create("tll", values)
        u = _uniform(50, 15)
        flipped = c.copy()
        flipped.flip()
        self.assertTrue(torch.allclose(flipped.hfunc1(swap_cols(u)), c.hfunc2(u), atol=1e-12))
        self.assertTrue(torch.allclose(flipped.pdf(swap_cols(u)), c.pdf(u), atol=1e-12))

    def test_cdf_is_a_copula(self):
        c = tb.create("tll")
        u = torch.tensor([[0.5, 0.5], [1.0, 0.3], [0.7, 1.0]], dtype=torch.float64)
        self.assertTrue(torch.allclose(c.cdf(u), torch.tensor([0.25, 0.3, 0.7], dtype=torch.float64), atol=1e-12))

        g = torch.Generator().manual_seed(16)
        c = tb.create("tll", 0.5 + torch.rand((30, 30), generator=g, dtype=torch.float64))
        v = _uniform(100, 17)
        ones = torch.ones(100, dtype=torch.float64)
        # The last normalization pass is over columns, so C(1, v) = v holds to rounding.
        self.assertTrue(torch.allclose(c.cdf(torch.stack([ones, v[:, 1]], dim=1)), v[:, 1], atol=1e-8))
        self.assertTrue(torch.allclose(c.cdf(torch.stack([v[:, 0], ones], dim=1)), v[:, 0], atol=5e-3))
        cdf = c.cdf(v)
        lower = (v.sum(dim=1) - 1.0).clamp_min(0.0)
        upper = v.min(dim=1).values
        self.assertTrue((cdf >= lower - 5e-3).all() and (cdf <= upper + 5e-3).all())

    def test_set_npars(self):
        c = tb.create("tll")
        c.set_npars(7.5)
        self.assertEqual(c.get_npars(), 7.5)
        with self.assertRaises(tb.InvalidParameters):
            c.set_npars(-1.0)
        with self.assertRaises(tb.InvalidParameters):
            c.set_npars(float("nan"))
        self.assertEqual(c.get_npars(), 7.5)

    def test_tau_to_parameters_unsupported(self):
        with self.assertRaises(tb.UnsupportedFamily):
            tb.create("tll").tau_to_parameters(0.3)


class TestConstruction(unittest.TestCase):

    def test_rotationless_families(self):
        self.assertEqual(set(tb.rotationless), {tb.indep, tb.gaussian, tb.student, tb.frank, tb.tll})
        u = _uniform(100, 18)
        for fam in ("gaussian", "student", "frank"):
            with self.subTest(family=fam):
                self.assertEqual(tb.family_rotations(fam), (0, 90))
                # Radial symmetry: the 180 degree rotation is the same copula.
                c0, c180 = _make(fam, 0), _make(fam, 180)
                self.assertTrue(torch.allclose(c180.pdf(u), c0.pdf(u), rtol=1e-6))
        self.assertEqual(tb.family_rotations("tll"), (0,))
        self.assertEqual(tb.family_rotations("clayton"), tb.ROTATIONS)

    def test_default_parameters(self):
        self.assertEqual(tb.create("gaussian").parameters.tolist(), [0.0])
        self.assertEqual(tb.create("student").parameters.tolist(), [0.0, 50.0])
        self.assertEqual(tb.create("frank").parameters.tolist(), [0.0])
        self.assertEqual(tb.create("gumbel").parameters.tolist(), [1.0])

    def test_factory_types(self):
        for fam in tb.all:
            with self.subTest(family=fam):
                c = AbstractBicop.create(fam)
                self.assertIsInstance(c, AbstractBicop)
                self.assertIs(c.family, fam)

    def test_invalid(self):
        with self.assertRaises(tb.InvalidParameters):
            tb.create("gaussian", [0.1, 0.2])
        with self.assertRaises(tb.InvalidParameters):
            tb.create("gaussian", [1.5])
        with self.assertRaises(tb.InvalidParameters):
            tb.create("bb1", [0.5])
        with self.assertRaises(tb.InvalidRotation):
            tb.create("clayton", [1.0], 45)
        with self.assertRaises(tb.UnsupportedFamily):
            tb.create("tawn")

    def test_set_parameters_keeps_valid_state(self):
        c = tb.create("clayton", [2.0])
        with self.assertRaises(tb.InvalidParameters):
            c.set_parameters([100.0])
        self.assertEqual(c.parameters.tolist(), [2.0])
        with self.assertRaises(tb.InvalidRotation):
            c.set_rotation(45)
        self.assertEqual(c.rotation, 0)

    def test_errors_are_value_errors(self):
        self.assertTrue(issubclass(tb.InvalidParameters, ValueError))
        self.assertTrue(issubclass(tb.FittingFailed, tb.BicopError))

    def test_custom_inversion_controls(self):
        ctl = tb.InversionControls(n_iter=10)
        c = AbstractBicop.create("gumbel", [2.0], inversion=ctl)
        self.assertIs(c.inversion, ctl)
        u = _uniform(20, 16, 0.1, 0.9)
        w = torch.stack([u[:, 0], c.hfunc1(u)], dim=1)
        # 10 halvings of the unit interval
        self.assertLess((c.hinv1(w) - u[:, 1]).abs().max().item(), 2.0 ** -10)


if __name__ == "__main__":
    unittest.main()
