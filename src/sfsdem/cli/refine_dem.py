from __future__ import annotations

import logging

from sfsdem.api.positions import lookup_position, read_position_records
from sfsdem.api.raster_io import load_dem
from sfsdem.core.camera import SunCameraModel, load_camera, model_params_from_camera
from sfsdem.core.image_io import BilinearImage, load_image
from sfsdem.core.reflectance import ModelParams
from sfsdem.options import SfsOptions
from sfsdem.sfs.observer import IterationObserver
from sfsdem.sfs.problem import SfsContext, SfsProblem, SolveReport

logger = logging.getLogger(__name__)


def load_cameras(options: SfsOptions) -> list[SunCameraModel]:
    cameras: list[SunCameraModel] = []
    for i, image_path in enumerate(options.input_images):
        cam_path = options.camera_path(i)
        logger.debug("Loading: %s %s", image_path, cam_path)
        cameras.append(load_camera(cam_path, options.session_type))
    return cameras


def load_model_params(options: SfsOptions, cameras: list[SunCameraModel]) -> list[ModelParams]:
    sun_records = read_position_records(options.sun_positions) if options.sun_positions else {}
    craft_records = read_position_records(options.spacecraft_positions) if options.spacecraft_positions else {}

    params: list[ModelParams] = []
    for image_path, camera in zip(options.input_images, cameras):
        mp = model_params_from_camera(
            camera,
            sun_override=lookup_position(sun_records, image_path),
            camera_override=lookup_position(craft_records, image_path),
        )
        logger.info("sun position: %s", mp.sun_position)
        logger.info("camera position: %s", mp.camera_position)
        params.append(mp)
    return params


def build_context(options: SfsOptions) -> SfsContext:
    dem = load_dem(options.input_dem)
    cameras = load_cameras(options)
    model_params = load_model_params(options, cameras)

    if len(options.input_images) > 1:
        logger.warning(
            "%d images given; only the first one is used for shape-from-shading.", len(options.input_images)
        )
    images = [load_image(p) for p in options.input_images]
    image = BilinearImage.from_array(images[0])

    context = SfsContext(
        dem=dem,
        model_params=model_params[0],
        global_params=options.global_params,
        image=image,
        camera=cameras[0],
        smoothness_weight=options.smoothness_weight,
    )
    logger.info("Grid size is %g", context.grid_size)
    logger.info("num cols and rows is %d %d", dem.cols, dem.rows)
    return context


def run_refine_dem(options: SfsOptions) -> SolveReport:
    options.create_output_dir()
    if options.threads:
        logger.debug("Residual evaluation is vectorized; --threads %d is not used by the solver.", options.threads)
    context = build_context(options)
    context.calibrate()
    problem = SfsProblem(context).build()
    observer = IterationObserver(context, options.output_prefix)
    return problem.solve(options.max_iterations, observer=observer)
