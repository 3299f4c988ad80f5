from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import coo_matrix

from sfsdem.api.raster_io import DemRaster
from sfsdem.core.camera import SunCameraModel
from sfsdem.core.image_io import BilinearImage
from sfsdem.core.reflectance import GlobalParams, ModelParams
from sfsdem.core.stats import BrightnessParams, calibrate_brightness
from sfsdem.errors import ModelInvariantError
from sfsdem.sfs.residuals import (
    STENCIL_OFFSETS,
    IntensityResidual,
    SmoothnessResidual,
    Stencil,
    compute_reflectance_and_intensity,
)

logger = logging.getLogger(__name__)

# Stencil entries each residual component reads.
INTENSITY_DEPENDENCIES: tuple[tuple[str, ...], ...] = (("center", "right", "top"),)
SMOOTHNESS_DEPENDENCIES: tuple[tuple[str, ...], ...] = (
    ("left", "center", "right"),
    ("tl", "tr", "bl", "br"),
    ("tl", "tr", "bl", "br"),
    ("top", "center", "bottom"),
)

IterationCallback = Callable[[int, np.ndarray], None]


class SolveState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    BUILT = "built"
    SOLVING = "solving"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"


@dataclass
class SfsContext:
    """
    Everything the residuals and the iteration observer read.

    Built once before the solve; `dem.heights` is owned by the solver while
    solving and is only written back when the solve returns.
    """

    dem: DemRaster
    model_params: ModelParams
    global_params: GlobalParams
    image: BilinearImage
    camera: SunCameraModel
    smoothness_weight: float = 1.0
    grid_size: float = 0.0
    brightness: BrightnessParams | None = None

    def __post_init__(self) -> None:
        if self.grid_size <= 0.0:
            self.grid_size = self.dem.georef.grid_spacing()

    @property
    def intensity_residual(self) -> IntensityResidual:
        return IntensityResidual(
            georef=self.dem.georef,
            nodata=self.dem.nodata,
            model_params=self.model_params,
            global_params=self.global_params,
            image=self.image,
            camera=self.camera,
        )

    @property
    def smoothness_residual(self) -> SmoothnessResidual:
        return SmoothnessResidual(
            smoothness_weight=float(self.smoothness_weight),
            grid_size=float(self.grid_size),
            nodata=self.dem.nodata,
        )

    def reflectance_and_intensity(self, heights: np.ndarray | None = None):
        h = self.dem.heights if heights is None else heights
        return compute_reflectance_and_intensity(h, self.intensity_residual)

    def calibrate(self) -> BrightnessParams:
        """One reference pass at the current heights, then the closed-form a0, a1."""
        reflectance, intensity, valid = self.reflectance_and_intensity()
        self.brightness = calibrate_brightness(reflectance, intensity, valid)
        logger.info("Albedo params A[0] and A[1] are %.17g %.17g", self.brightness.a0, self.brightness.a1)
        return self.brightness


@dataclass(frozen=True)
class SolveReport:
    state: SolveState
    message: str
    iterations: int
    num_residual_evaluations: int
    num_jacobian_evaluations: int
    initial_cost: float
    final_cost: float
    num_residual_blocks: int
    num_parameters: int
    num_constant_parameters: int

    def full_report(self) -> str:
        lines = [
            "Solver Summary",
            "",
            f"{'Residual blocks':<28}{self.num_residual_blocks}",
            f"{'Parameters':<28}{self.num_parameters}",
            f"{'Constant parameters':<28}{self.num_constant_parameters}",
            "",
            f"{'Initial cost':<28}{self.initial_cost:.6e}",
            f"{'Final cost':<28}{self.final_cost:.6e}",
            f"{'Change':<28}{self.initial_cost - self.final_cost:.6e}",
            "",
            f"{'Iterations':<28}{self.iterations}",
            f"{'Residual evaluations':<28}{self.num_residual_evaluations}",
            f"{'Jacobian evaluations':<28}{self.num_jacobian_evaluations}",
            "",
            f"Termination: {self.state.name} ({self.message})",
        ]
        return "\n".join(lines)


class SfsProblem:
    """
    Least-squares assembly over the DEM.

    Every interior cell (1 <= col <= ncols-2, 1 <= row <= nrows-2) gets one
    intensity block and one smoothness block bound to its 9-height stencil.
    Border-ring heights reached by a stencil, no-data heights and the
    brightness pair (a0, a1) are constant; the remaining heights are the
    solver's parameter vector.

    Per-block failures map onto the residual vector as follows: a block that
    already fails at the starting heights (no-data neighbour, footprint off
    the image) contributes 0; a block that starts valid and fails at a trial
    point contributes the 1e20 sentinel so the trial step is rejected.
    """

    def __init__(self, context: SfsContext) -> None:
        self.context = context
        self.state = SolveState.UNINITIALIZED
        self.iteration = -1

    # -- assembly -------------------------------------------------------

    def build(self) -> "SfsProblem":
        ctx = self.context
        if ctx.brightness is None:
            ctx.calibrate()
        assert ctx.brightness is not None

        heights = ctx.dem.heights
        rows_n, cols_n = heights.shape
        cols, rows = np.meshgrid(np.arange(1, cols_n - 1), np.arange(1, rows_n - 1), indexing="ij")
        self.cols = cols.ravel()
        self.rows = rows.ravel()
        n_blocks = int(self.cols.size)

        # Flat cell index of every stencil entry, shape (n_blocks, 9).
        self.stencil_cells = np.stack(
            [(self.rows + dr) * cols_n + (self.cols + dc) for _name, dc, dr in STENCIL_OFFSETS], axis=1
        )

        touched = np.zeros(heights.size, dtype=bool)
        touched[self.stencil_cells.ravel()] = True
        ring = np.ones(heights.shape, dtype=bool)
        ring[1:-1, 1:-1] = False
        nodata = heights == ctx.dem.nodata
        constant = touched & (ring.ravel() | nodata.ravel() | ~np.isfinite(heights.ravel()))
        self.constant_mask = constant.reshape(heights.shape)
        self.free_cells = np.flatnonzero(touched & ~constant)
        param_of_cell = np.full(heights.size, -1, dtype=np.intp)
        param_of_cell[self.free_cells] = np.arange(self.free_cells.size)
        self._param_of_cell = param_of_cell

        self._base_heights = heights.copy()
        self._base_heights.setflags(write=False)
        brightness = ctx.brightness.as_array()
        brightness.setflags(write=False)
        self.brightness = brightness
        self._intensity = ctx.intensity_residual
        self._smoothness = ctx.smoothness_residual

        self.jac_sparsity = self._build_jac_sparsity(n_blocks)

        start = self._evaluate(self._base_heights)
        self._inactive_intensity = ~start[0].success
        self._inactive_smoothness = ~start[1].success

        self.n_blocks = n_blocks
        self.state = SolveState.BUILT
        logger.info(
            "Built problem: %d residual blocks, %d free heights, %d constant heights.",
            2 * n_blocks,
            self.free_cells.size,
            int(constant.sum()),
        )
        return self

    def _build_jac_sparsity(self, n_blocks: int) -> coo_matrix:
        slot = {name: i for i, (name, _dc, _dr) in enumerate(STENCIL_OFFSETS)}
        row_parts: list[np.ndarray] = []
        col_parts: list[np.ndarray] = []
        comps = [(0, deps) for deps in INTENSITY_DEPENDENCIES]
        comps += [(1 + k, deps) for k, deps in enumerate(SMOOTHNESS_DEPENDENCIES)]
        # Residual vector layout: [intensity (n_blocks), smoothness (n_blocks x 4, row-major)].
        for k, deps in comps:
            if k == 0:
                res_rows = np.arange(n_blocks)
            else:
                res_rows = n_blocks + 4 * np.arange(n_blocks) + (k - 1)
            for name in deps:
                params = self._param_of_cell[self.stencil_cells[:, slot[name]]]
                keep = params >= 0
                row_parts.append(res_rows[keep])
                col_parts.append(params[keep])
        r = np.concatenate(row_parts) if row_parts else np.zeros(0, dtype=np.intp)
        c = np.concatenate(col_parts) if col_parts else np.zeros(0, dtype=np.intp)
        data = np.ones(r.size, dtype=np.int8)
        return coo_matrix((data, (r, c)), shape=(5 * n_blocks, self.free_cells.size)).tocsr()

    # -- evaluation -----------------------------------------------------

    def heights_for(self, x: np.ndarray) -> np.ndarray:
        h = self._base_heights.copy()
        np.put(h, self.free_cells, np.asarray(x, dtype=np.float64))
        return h

    def initial_parameters(self) -> np.ndarray:
        return self._base_heights.ravel()[self.free_cells].copy()

    def _evaluate(self, heights: np.ndarray):
        stencil = Stencil.from_grid(heights, self.cols, self.rows)
        intensity = self._intensity.evaluate(self.cols, self.rows, stencil, self.brightness)
        smoothness = self._smoothness.evaluate(stencil)
        return intensity, smoothness

    def residuals(self, x: np.ndarray) -> np.ndarray:
        intensity, smoothness = self._evaluate(self.heights_for(x))
        r_int = intensity.values[:, 0].copy()
        r_int[self._inactive_intensity] = 0.0
        r_smo = smoothness.values.copy()
        r_smo[self._inactive_smoothness] = 0.0
        return np.concatenate([r_int, r_smo.ravel()])

    def cost(self, x: np.ndarray | None = None) -> float:
        x = self.initial_parameters() if x is None else x
        r = self.residuals(x)
        return 0.5 * float(r @ r)

    # -- solving --------------------------------------------------------

    def solve(self, max_iterations: int, observer: IterationCallback | None = None) -> SolveReport:
        if self.state is not SolveState.BUILT:
            raise ModelInvariantError(f"Problem must be built before solving (state: {self.state.name}).")
        if max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")

        x0 = self.initial_parameters()
        initial_cost = self.cost(x0)
        n_const = int(self.constant_mask.sum())

        if max_iterations == 0 or x0.size == 0:
            self.state = SolveState.MAX_ITERATIONS if max_iterations == 0 else SolveState.CONVERGED
            return SolveReport(
                state=self.state,
                message="No iterations requested." if max_iterations == 0 else "No free heights.",
                iterations=0,
                num_residual_evaluations=1,
                num_jacobian_evaluations=0,
                initial_cost=initial_cost,
                final_cost=initial_cost,
                num_residual_blocks=2 * self.n_blocks,
                num_parameters=int(x0.size),
                num_constant_parameters=n_const,
            )

        self.state = SolveState.SOLVING
        self.iteration = -1
        self._last_x = x0.copy()
        self._budget = int(max_iterations)
        self._budget_reached = False

        try:
            sol = least_squares(
                self.residuals,
                x0,
                jac_sparsity=self.jac_sparsity,
                method="trf",
                tr_solver="lsmr",
                ftol=1e-12,
                gtol=1e-12,
                xtol=1e-10,
                max_nfev=max(100 * int(x0.size), 20 * int(max_iterations)),
                callback=self._make_callback(observer),
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            self.state = SolveState.FAILED
            logger.error("Solver failed: %s", e)
            return SolveReport(
                state=self.state,
                message=str(e),
                iterations=self.iteration + 1,
                num_residual_evaluations=0,
                num_jacobian_evaluations=0,
                initial_cost=initial_cost,
                final_cost=initial_cost,
                num_residual_blocks=2 * self.n_blocks,
                num_parameters=int(x0.size),
                num_constant_parameters=n_const,
            )

        np.put(self.context.dem.heights, self.free_cells, sol.x)

        message = str(sol.message)
        if self._budget_reached:
            self.state = SolveState.MAX_ITERATIONS
            message = f"Reached the maximum number of iterations ({self._budget})."
        elif sol.status > 0:
            self.state = SolveState.CONVERGED
        elif sol.status == 0:
            self.state = SolveState.MAX_ITERATIONS
        else:
            self.state = SolveState.FAILED

        return SolveReport(
            state=self.state,
            message=message,
            iterations=self.iteration + 1,
            num_residual_evaluations=int(sol.nfev),
            num_jacobian_evaluations=int(sol.njev or 0),
            initial_cost=initial_cost,
            final_cost=float(sol.cost),
            num_residual_blocks=2 * self.n_blocks,
            num_parameters=int(x0.size),
            num_constant_parameters=n_const,
        )

    def _notify(self, observer: IterationCallback, x: np.ndarray) -> None:
        heights = self.heights_for(np.array(x, dtype=np.float64, copy=True))
        heights.setflags(write=False)
        try:
            observer(self.iteration, heights)
        except Exception:
            logger.exception("Iteration observer failed at iteration %d", self.iteration)

    def _make_callback(self, observer: IterationCallback | None):
        """
        trf calls back once per outer iteration, including one that ends
        without an accepted step; only steps that moved `x` are counted.
        Raising StopIteration ends the solve once the budget is spent.
        """

        def _on_iteration(intermediate_result) -> None:
            x = np.asarray(getattr(intermediate_result, "x", intermediate_result), dtype=np.float64)
            if np.array_equal(x, self._last_x):
                return
            self._last_x = x.copy()
            self.iteration += 1
            if observer is not None:
                self._notify(observer, x)
            if self.iteration + 1 >= self._budget:
                self._budget_reached = True
                raise StopIteration

        return _on_iteration
