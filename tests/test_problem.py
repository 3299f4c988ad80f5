import numpy as np
import pytest

from sfsdem.errors import ModelInvariantError
from sfsdem.sfs.problem import SfsProblem, SolveState
from synthetic import NODATA, bumpy_heights, make_context, ramp_image


def _ring(shape):
    ring = np.ones(shape, dtype=bool)
    ring[1:-1, 1:-1] = False
    return ring


def test_build_registers_interior_blocks_and_fixes_ring():
    ctx = make_context(bumpy_heights(7), image=ramp_image())
    problem = SfsProblem(ctx)
    assert problem.state is SolveState.UNINITIALIZED
    problem.build()
    assert problem.state is SolveState.BUILT

    assert problem.n_blocks == 25
    assert problem.free_cells.size == 25
    np.testing.assert_array_equal(problem.constant_mask, _ring((7, 7)))
    assert problem.jac_sparsity.shape == (5 * 25, 25)
    # Interior cells only: both indices in 1..ncols-2.
    assert problem.cols.min() == 1 and problem.cols.max() == 5
    assert problem.rows.min() == 1 and problem.rows.max() == 5
    assert ctx.brightness is not None


def test_brightness_is_calibrated_then_frozen():
    ctx = make_context(bumpy_heights(7), image=ramp_image())
    problem = SfsProblem(ctx).build()
    a = ctx.brightness
    problem.solve(3)
    assert ctx.brightness == a
    np.testing.assert_array_equal(problem.brightness, [a.a0, a.a1])
    with pytest.raises(ValueError):
        problem.brightness[0] = 2.0


def test_boundary_ring_is_bit_identical_after_solve():
    heights = bumpy_heights(7, seed=4)
    ctx = make_context(heights, image=ramp_image())
    before = ctx.dem.heights.copy()
    problem = SfsProblem(ctx).build()
    report = problem.solve(5)

    after = ctx.dem.heights
    ring = _ring(before.shape)
    assert np.array_equal(before[ring], after[ring])
    assert report.state in (SolveState.CONVERGED, SolveState.MAX_ITERATIONS)
    assert report.final_cost <= report.initial_cost
    # The curvature term pulls the random interior towards a smoother surface.
    assert not np.array_equal(before[~ring], after[~ring])


def test_flat_dem_is_already_optimal(flat_context):
    problem = SfsProblem(flat_context).build()
    assert problem.cost() == pytest.approx(0.0, abs=1e-20)
    report = problem.solve(20)
    assert report.state is SolveState.CONVERGED
    np.testing.assert_allclose(flat_context.dem.heights, 100.0, rtol=0, atol=1e-6)


def test_zero_iterations_leaves_heights_untouched():
    ctx = make_context(bumpy_heights(6), image=ramp_image())
    before = ctx.dem.heights.copy()
    report = SfsProblem(ctx).build().solve(0)
    assert report.state is SolveState.MAX_ITERATIONS
    assert report.iterations == 0
    np.testing.assert_array_equal(ctx.dem.heights, before)


def test_solve_requires_build():
    ctx = make_context(bumpy_heights(5))
    with pytest.raises(ModelInvariantError):
        SfsProblem(ctx).solve(3)


def test_nodata_heights_stay_fixed_and_neutral():
    heights = bumpy_heights(7, seed=1)
    heights[3, 3] = NODATA
    ctx = make_context(heights, image=ramp_image())
    problem = SfsProblem(ctx).build()

    assert problem.constant_mask[3, 3]
    assert problem.free_cells.size == 24
    r0 = problem.residuals(problem.initial_parameters())
    assert np.all(np.abs(r0) < 1e19)

    problem.solve(3)
    assert ctx.dem.heights[3, 3] == NODATA
    assert np.all(np.isfinite(ctx.dem.heights))


def test_observer_failure_does_not_change_trajectory():
    heights = bumpy_heights(7, seed=2)
    calls = []

    def failing_observer(iteration, h):
        calls.append(iteration)
        raise RuntimeError("disk full")

    ctx_a = make_context(heights, image=ramp_image())
    SfsProblem(ctx_a).build().solve(4)

    ctx_b = make_context(heights, image=ramp_image())
    report = SfsProblem(ctx_b).build().solve(4, observer=failing_observer)

    np.testing.assert_array_equal(ctx_a.dem.heights, ctx_b.dem.heights)
    assert report.state in (SolveState.CONVERGED, SolveState.MAX_ITERATIONS)
    assert calls and calls[0] == 0


def test_observer_receives_a_read_only_copy():
    ctx = make_context(bumpy_heights(6, seed=5), image=ramp_image())
    seen = []

    def observer(iteration, h):
        seen.append((iteration, h is ctx.dem.heights, h.flags.writeable))

    SfsProblem(ctx).build().solve(3, observer=observer)
    assert seen
    assert all(not same and not writeable for _i, same, writeable in seen)


def test_full_report_mentions_termination():
    ctx = make_context(bumpy_heights(5), image=ramp_image())
    report = SfsProblem(ctx).build().solve(2)
    text = report.full_report()
    assert "Termination" in text
    assert "Residual blocks" in text


@pytest.mark.parametrize("budget", [1, 2, 4])
def test_iteration_budget_counts_accepted_steps(budget):
    ctx = make_context(bumpy_heights(7), image=ramp_image())
    before = ctx.dem.heights.copy()
    calls = []

    def observer(iteration, h):
        calls.append(iteration)

    report = SfsProblem(ctx).build().solve(budget, observer=observer)

    assert report.state is SolveState.MAX_ITERATIONS
    assert report.iterations == budget
    assert calls == list(range(budget))
    assert report.num_residual_evaluations > budget
    assert not np.array_equal(before, ctx.dem.heights)


def test_converged_solve_reports_accepted_steps():
    ctx = make_context(bumpy_heights(6, seed=3), image=ramp_image())
    calls = []
    report = SfsProblem(ctx).build().solve(500, observer=lambda i, h: calls.append(i))
    assert report.iterations <= 500
    assert calls == list(range(report.iterations))
