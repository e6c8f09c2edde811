#!/usr/bin/env python3
# src/outbreak_trees/runner.py: concise runner

import argparse
import logging
import time

from .errors import OutbreakTreesError
from .handoff.mcmc_input import ParameterSpec, RunOptions, write_handoff
from .simulate import batch_processing as batch
from .simulate import sim_config as sim

logger = logging.getLogger(__name__)


def add_simulation_args(p):
    p.add_argument("--R0", type=float, default=2.0, help="Basic reproduction number (default: 2.0)")
    p.add_argument("-k", "--dispersion", dest="k", type=float, default=0.5,
                   help="Negative binomial dispersion k (default: 0.5)")
    p.add_argument("-N", "--population", dest="N", type=int, default=5000,
                   help="Population size (default: 5000)")
    p.add_argument("-S", "--susceptible", dest="S", type=int, default=None,
                   help="Initial susceptibles (default: N - 1)")
    p.add_argument("--Tg", type=float, default=5.0, help="Mean generation time (default: 5.0)")
    p.add_argument("--gamma", type=float, default=None, help="Recovery rate; overrides --Tg")
    p.add_argument("--dt", type=float, default=0.1, help="Step size (default: 0.1)")
    p.add_argument("--total-dt", type=float, default=1500.0, metavar="T",
                   help="Total simulated time (default: 1500)")
    p.add_argument("--min-epi-size", type=int, default=20, help="Minimum accepted outbreak size (default: 20)")
    p.add_argument("--max-attempts", type=int, default=100, help="Retries before giving up (default: 100)")
    p.add_argument("--no-tracking", action="store_true", help="Do not record who infected whom")
    p.add_argument("--seed", type=int, default=1010113, help="RNG seed (default: 1010113)")


def config_from_args(args):
    return sim.SimConfig(
        R0=args.R0,
        k=args.k,
        N=args.N,
        S=args.N - 1 if args.S is None else args.S,
        Tg=args.Tg,
        gamma=args.gamma,
        dt=args.dt,
        total_dt=args.total_dt,
        min_epi_size=args.min_epi_size,
        max_attempts=args.max_attempts,
        track_transmissions=not args.no_tracking,
        seed=args.seed,
        time_series_step=getattr(args, "step", 1.0),
        sample_strategy=getattr(args, "sample_strategy", None),
        sample_parameter=getattr(args, "sample_parameter", 1.0),
        sample_seed=getattr(args, "sample_seed", None),
        out_dir=getattr(args, "out", None),
    )


def main(argv=None):
    p = argparse.ArgumentParser(description="Outbreak simulation and tree derivation")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- simulate ----------
    sim_p = sub.add_parser("simulate", help="Simulate one outbreak and derive trees and time series")
    add_simulation_args(sim_p)
    sim_p.add_argument("--step", type=float, default=1.0, help="Time-series bin width (default: 1.0)")
    sim_p.add_argument("--sample-strategy", choices=["proportional", "fixed-count"], default=None)
    sim_p.add_argument("--sample-parameter", type=float, default=1.0,
                       help="Inclusion probability or sample size")
    sim_p.add_argument("--sample-seed", type=int, default=None)
    sim_p.add_argument("--out", default="data/outbreak", metavar="DIR", help="Output directory")

    # ---------- batch ----------
    batch_p = sub.add_parser("batch", help="Simulate many outbreaks and write a summary CSV")
    add_simulation_args(batch_p)
    batch_p.add_argument("-n", "--num", dest="n", type=int, default=100, help="Number of outbreaks (default: 100)")
    batch_p.add_argument("--workers", type=int, default=1)
    batch_p.add_argument("--out", default="data/outbreak_summary.csv", metavar="PATH")

    # ---------- handoff ----------
    ho_p = sub.add_parser("handoff", help="Simulate, then write inference input files")
    add_simulation_args(ho_p)
    ho_p.add_argument("--step", type=float, default=1.0)
    ho_p.add_argument("--sample-strategy", choices=["proportional", "fixed-count"], default=None)
    ho_p.add_argument("--sample-parameter", type=float, default=1.0)
    ho_p.add_argument("--sample-seed", type=int, default=None)
    ho_p.add_argument("--mode", choices=["epi+gen", "epi", "gen"], default="epi+gen")
    ho_p.add_argument("--particles", type=int, default=1000)
    ho_p.add_argument("--iterations", type=int, default=10000)
    ho_p.add_argument("--out", default="data/handoff", metavar="DIR")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    t0 = time.perf_counter()

    try:
        if args.cmd == "simulate":
            result = sim.run_pipeline(config_from_args(args))
            print("Outbreak size:", result.outbreak.total_infected, "->", args.out)

        elif args.cmd == "batch":
            cfg = config_from_args(args)
            _, csv_path = batch.generate_batch(
                cfg.parameters(), args.n, seed=cfg.seed, workers=args.workers, out_path=args.out,
            )
            print("Batch done ->", csv_path)

        elif args.cmd == "handoff":
            cfg = config_from_args(args)
            cfg.out_dir = None
            result = sim.run_pipeline(cfg)
            phylo = result.phylogeny
            series = result.epi_series
            if result.sample is not None:
                phylo = result.sample.phylogeny
                series = result.sampled_series
            specs = [
                ParameterSpec("R0", args.R0, "uniform", (0.0, 10.0), 0.1, lower=0.0, upper=10.0),
                ParameterSpec("k", args.k, "exponential", (1.0,), 0.05, lower=1e-6),
            ]
            options = RunOptions(particles=args.particles, iterations=args.iterations, mode=args.mode)
            write_handoff(args.out, specs, options, time_series=series, phylogeny=phylo)
            print("Inference inputs ->", args.out)
    except OutbreakTreesError as exc:
        logger.error("%s", exc)
        return 1

    print(f"Done in {time.perf_counter() - t0:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
