"""
Shape-from-shading refinement of a DEM as a sparse nonlinear least-squares problem.

One photometric residual and one curvature residual per interior grid cell;
the border ring anchors absolute height and tilt.
"""

from sfsdem.sfs.observer import IterationObserver
from sfsdem.sfs.problem import SfsContext, SfsProblem, SolveReport, SolveState

__all__ = ["SfsContext", "SfsProblem", "SolveReport", "SolveState", "IterationObserver"]
