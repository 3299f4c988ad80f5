from sfsdem.api import DemRaster, load_dem, write_raster
from sfsdem.errors import ConfigurationError, DataError, ModelInvariantError, SfsError
from sfsdem.sfs import IterationObserver, SfsContext, SfsProblem, SolveReport, SolveState

__all__ = [
    "DemRaster",
    "load_dem",
    "write_raster",
    "SfsContext",
    "SfsProblem",
    "SolveReport",
    "SolveState",
    "IterationObserver",
    "SfsError",
    "ConfigurationError",
    "DataError",
    "ModelInvariantError",
]
