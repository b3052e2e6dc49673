import logging
from concurrent.futures import wait
from pathlib import Path

import hydra
from hydra.core.hydra_config import HydraConfig
from omegaconf import DictConfig, OmegaConf

from jwm.climatology import climatology_from_file
from jwm.core import WeatherCore
from jwm.instrumentation import LoggingInstrumentation
from jwm.output import fields_to_xarray
from jwm.params import Parameters

logger = logging.getLogger(__name__)


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg: DictConfig):
    """
    Runs the weather core with configurable parameters and writes the final
    fields to netCDF.

    Example:
        python -m jwm.main
        python -m jwm.main model.dt=60 model.hours=48
        python -m jwm.main parameters.vertical.enable_convection=false
        python -m jwm.main -m model.seed=0,1,2

    Available Parameters:
        model.nx, model.ny: Grid size (default: 180 x 90)
        model.dt: Timestep in seconds (default: 120)
        model.hours: Simulated hours (default: 24)
        model.seed: Seed of the initial perturbation (default: 0)
        model.climatology: Optional netCDF climatology, analytic when empty
        parameters: Per-stage overrides, e.g. parameters.dynamics.max_wind=100
    """
    params = Parameters.from_dict(OmegaConf.to_container(cfg.parameters, resolve=True))
    instrumentation = LoggingInstrumentation() if cfg.model.instrument else None
    core = WeatherCore(nx=cfg.model.nx, ny=cfg.model.ny, dt=cfg.model.dt, seed=cfg.model.seed, params=params,
                       instrumentation=instrumentation, time_utc=cfg.model.start_seconds)

    if cfg.model.climatology:
        path = cfg.model.climatology
        wait([core.load_climatology(lambda grid: climatology_from_file(path, grid))])
    else:
        core.initialize()

    total = cfg.model.hours * 3600.0
    done = 0
    while done * core.dt < total:
        steps = core.advance(min(total - done * core.dt, core.max_steps_per_tick * core.dt))
        if steps == 0:
            break
        done += steps
    logger.info("ran %d steps (%.1f h)", done, done * core.dt / 3600.0)

    ds = fields_to_xarray(core)
    core.close()

    hydra_cfg = HydraConfig.get()
    base_dir = Path('outputs') / hydra_cfg.run.dir.split('outputs/')[-1]
    if str(hydra_cfg.mode) == "RunMode.MULTIRUN":
        output_dir = base_dir / 'multirun' / str(hydra_cfg.job.num)
    else:
        output_dir = base_dir

    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / "weather_state.nc"
    ds.to_netcdf(str(output_path))
    logger.info("wrote %s", output_path)


if __name__ == "__main__":
    main()
