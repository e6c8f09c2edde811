# src/outbreak_trees/simulate/sim_config.py
"""
Configuration and a single entry point that runs the whole chain:
simulate -> transmission tree -> phylogeny -> downsample -> time series,
optionally writing the results to a directory.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import pathlib

from .epidemic import EpidemicParameters, Outbreak, simulate_outbreak
from ..sampling.downsample import Downsample, downsample
from ..timeseries.aggregate import (
    TimeSeries,
    line_list_time_series,
    outbreak_time_series,
    phylogeny_time_series,
)
from ..trees.phylogeny import Phylogeny, build_phylogeny
from ..trees.transmission import TransmissionTree, build_transmission_tree
from ..handoff.mcmc_input import write_phylogeny, write_time_series

# Start logger
logger = logging.getLogger(__name__)


@dataclass
class SimConfig:
    R0: float = 2.0
    k: float = 0.5
    N: int = 5000
    S: int = 4999
    Tg: Optional[float] = 5.0
    gamma: Optional[float] = None
    dt: float = 0.1
    total_dt: float = 1500.0
    min_epi_size: int = 20
    max_attempts: int = 100
    track_transmissions: bool = True
    seed: Optional[int] = 1010113
    time_series_step: float = 1.0
    sample_strategy: Optional[str] = None
    sample_parameter: float = 1.0
    sample_seed: Optional[int] = None
    n_realisations: int = 1
    workers: int = 1
    out_dir: Optional[str] = None

    def parameters(self) -> EpidemicParameters:
        return EpidemicParameters(
            R0=self.R0,
            k=self.k,
            N=self.N,
            S=self.S,
            Tg=self.Tg if self.gamma is None else None,
            gamma=self.gamma,
            dt=self.dt,
            total_dt=self.total_dt,
            min_epi_size=self.min_epi_size,
            max_attempts=self.max_attempts,
            track_transmissions=self.track_transmissions,
        )


@dataclass(frozen=True)
class PipelineResult:
    outbreak: Outbreak
    epi_series: TimeSeries
    transmission_tree: Optional[TransmissionTree] = None
    phylogeny: Optional[Phylogeny] = None
    sample: Optional[Downsample] = None
    sampled_series: Optional[TimeSeries] = None
    gen_series: Optional[TimeSeries] = None


def run_pipeline(cfg: SimConfig) -> PipelineResult:
    """Run one outbreak through every derived representation.

    Trees, sampling and the genetic series need transmission tracking; without
    it only the outbreak and its incidence/prevalence series are produced.
    """
    outbreak = simulate_outbreak(cfg.parameters(), seed=cfg.seed)
    epi_series = outbreak_time_series(outbreak.state, cfg.time_series_step)
    logger.info("Epidemic series: %d bins, %d infections", len(epi_series), epi_series.total)

    if outbreak.individuals is None:
        result = PipelineResult(outbreak=outbreak, epi_series=epi_series)
        _write_outputs(cfg, result)
        return result

    tree = build_transmission_tree(outbreak)
    phylo = build_phylogeny(tree)
    logger.info("Phylogeny: %d tips, %d internal nodes", phylo.n_tips, phylo.n_internal)

    sample = None
    sampled_series = None
    gen_phylo = phylo
    if cfg.sample_strategy is not None:
        sample = downsample(
            outbreak,
            cfg.sample_strategy,
            cfg.sample_parameter,
            seed=cfg.sample_seed,
            phylogeny=phylo,
        )
        sampled_series = line_list_time_series(
            sample.line_list,
            cfg.time_series_step,
            column="removal_time",
            end_time=outbreak.state.end_time,
        )
        gen_phylo = sample.phylogeny

    gen_series = phylogeny_time_series(gen_phylo, cfg.time_series_step, end_time=outbreak.state.end_time)
    result = PipelineResult(
        outbreak=outbreak,
        epi_series=epi_series,
        transmission_tree=tree,
        phylogeny=phylo,
        sample=sample,
        sampled_series=sampled_series,
        gen_series=gen_series,
    )
    _write_outputs(cfg, result)
    return result


def _write_outputs(cfg: SimConfig, result: PipelineResult) -> None:
    if cfg.out_dir is None:
        return
    out = pathlib.Path(cfg.out_dir)
    out.mkdir(parents=True, exist_ok=True)

    result.outbreak.state.to_frame().to_csv(out / "outbreak_state.csv", index=False)
    write_time_series(result.epi_series, out / "epi_series.csv")
    if result.outbreak.individuals is not None:
        result.outbreak.line_list().to_csv(out / "line_list.csv", index=False)
        result.transmission_tree.to_frame().to_csv(out / "transmission_edges.csv", index=False)
        write_phylogeny(result.phylogeny, out / "phylogeny.nwk")
        write_time_series(result.gen_series, out / "gen_series.csv")
    if result.sample is not None:
        result.sample.line_list.to_csv(out / "sampled_line_list.csv", index=False)
        write_time_series(result.sampled_series, out / "sampled_series.csv")
        if result.sample.phylogeny.n_tips:
            write_phylogeny(result.sample.phylogeny, out / "sampled_phylogeny.nwk")
    logger.info("Outputs written to: %s", out)
