#!/usr/bin/env python
"""
Model-Mismatch Estimation Sweep

Runs the estimators over every combination of network, mismatch level and
prior, and writes the summary table (CSV) and the tile-aligned estimate
vectors (NPZ).

Input files:
    links.csv       network, tile, cell, and dominance and/or signal (dBm)
    counts.csv      network, cell, count
    priors.csv      tile, then one column per prior variant (optional;
                    a uniform prior is used when omitted)
    supertiles.csv  tile, supertile (optional)

Usage:
    python run_mismatch_sweep.py --links data/links.csv --counts data/counts.csv
    python run_mismatch_sweep.py --links data/links.csv --counts data/counts.csv \
        --priors data/priors.csv --estimators em df convex --n-jobs 4
"""

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from mnopop.estimation import uniform_prior
from mnopop.experiment import (
    NetworkInputs,
    make_jobs,
    run_sweep,
    append_records_to_csv,
    records_to_frame,
    save_estimates,
)
from mnopop.observation import mismatch_grid
from mnopop.utils import load_config


def load_networks(links_path, counts_path, supertiles_path=None):
    """Split the link and count tables into per-network inputs over a shared tile space."""
    links = pd.read_csv(links_path)
    counts = pd.read_csv(counts_path)
    tile_ids = np.sort(links['tile'].unique())

    supertile_of = None
    if supertiles_path is not None:
        supertiles = pd.read_csv(supertiles_path)
        supertile_of = supertiles.set_index('tile')['supertile']

    networks = {}
    for name, network_links in links.groupby('network'):
        network_counts = counts.loc[counts['network'] == name].set_index('cell')['count']
        networks[str(name)] = NetworkInputs(
            name=str(name),
            links=network_links.drop(columns='network').reset_index(drop=True),
            counts=network_counts,
            tile_ids=tile_ids,
            supertile_of=supertile_of,
        )
    return networks, tile_ids


def load_priors(priors_path, tile_ids):
    """Prior variants by column name, aligned to ``tile_ids``."""
    if priors_path is None:
        return {'uniform': uniform_prior(len(tile_ids))}
    priors = pd.read_csv(priors_path).set_index('tile').reindex(tile_ids, fill_value=0.0)
    return {str(col): priors[col].to_numpy(dtype=float) for col in priors.columns}


def main(args):
    """Main sweep function."""
    print("Loading configuration...")
    overrides = {}
    if args.estimators:
        overrides['sweep'] = {'estimators': args.estimators}
    config = load_config(args.config, overrides=overrides)

    networks, tile_ids = load_networks(args.links, args.counts, args.supertiles)
    priors = load_priors(args.priors, tile_ids)

    mismatches = mismatch_grid(config['mismatch']['noise_levels'],
                               config['mismatch']['quantization_levels'])
    jobs = make_jobs(sorted(networks), mismatches, sorted(priors), config['sweep']['estimators'])

    print(f"\nNetworks: {len(networks)}, mismatch levels: {len(mismatches)}, "
          f"priors: {len(priors)}, estimators: {len(config['sweep']['estimators'])}")

    records = run_sweep(jobs, networks, priors, config=config, n_jobs=args.n_jobs)

    output_dir = Path(args.output_dir)
    csv_path = append_records_to_csv(records, output_dir)
    npz_path = save_estimates(records, tile_ids, output_dir / 'estimates.npz')

    summary = records_to_frame(records)
    print(f"\n{'='*60}")
    print("SUMMARY")
    print(f"{'='*60}")
    print(summary.groupby(['estimator', 'status']).size().to_string())
    print(f"\nResults saved to {csv_path} and {npz_path}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Run estimators across model-mismatch levels')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration file (default: config/parameters.yaml)')
    parser.add_argument('--links', type=str, required=True,
                        help='CSV of tile-cell links')
    parser.add_argument('--counts', type=str, required=True,
                        help='CSV of observed counts per cell')
    parser.add_argument('--priors', type=str, default=None,
                        help='CSV of prior variants per tile')
    parser.add_argument('--supertiles', type=str, default=None,
                        help='CSV mapping tiles to supertiles')
    parser.add_argument('--estimators', nargs='+', default=None,
                        choices=['em', 'df', 'convex'],
                        help='Estimators to run (default: from config)')
    parser.add_argument('--n-jobs', type=int, default=None,
                        help='Parallel workers (default: from config)')
    parser.add_argument('--output-dir', type=str, default='./results/',
                        help='Output directory')

    args = parser.parse_args()
    main(args)
