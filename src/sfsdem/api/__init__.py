from sfsdem.api.positions import lookup_position, read_position_records
from sfsdem.api.raster_io import DemRaster, load_dem, write_raster

__all__ = [
    "DemRaster",
    "load_dem",
    "write_raster",
    "read_position_records",
    "lookup_position",
]
