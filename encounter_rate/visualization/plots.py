#!/usr/bin/env python3
"""
Diagnostic Figures
==================

Importance bars, partial dependence panels, the calibration curve and a
scatter map of the prediction surface. Figures are written to disk and
closed; nothing is shown interactively.
"""

import logging
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap

logger = logging.getLogger(__name__)


def _save(fig, output_path):
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Saved figure to {output_path}")
    return output_path


def plot_importance(importance_df: pd.DataFrame, output_path, top_n=20):
    """Horizontal bar chart of the most important covariates."""
    top = importance_df.head(top_n)
    fig, ax = plt.subplots(figsize=(8, 0.35 * len(top) + 1.5))
    sns.barplot(data=top, x='score', y='covariate', color='steelblue', ax=ax)
    ax.set_xlabel('Importance (Gini decrease)')
    ax.set_ylabel('')
    ax.set_title('Covariate Importance')
    ax.grid(axis='x', alpha=0.3)
    return _save(fig, output_path)


def plot_partial_dependence(pd_table: pd.DataFrame, output_path, ncols=3):
    """One panel per covariate of a long partial dependence table."""
    covariates = list(dict.fromkeys(pd_table['covariate']))
    nrows = max(1, int(np.ceil(len(covariates) / ncols)))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3 * nrows),
                             squeeze=False)

    for ax, covariate in zip(axes.flat, covariates):
        curve = pd_table[pd_table['covariate'] == covariate]
        ax.plot(curve['value'], curve['average_response'], color='darkgreen')
        ax.set_title(covariate, fontsize=9)
        ax.set_ylabel('Encounter rate', fontsize=8)
        ax.grid(alpha=0.3)

    for ax in list(axes.flat)[len(covariates):]:
        ax.axis('off')

    fig.tight_layout()
    return _save(fig, output_path)


def plot_calibration(calibration_df: pd.DataFrame, calibrator, output_path):
    """Binned observed frequency against prediction, with the fitted curve."""
    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(calibration_df['mean_predicted'],
               calibration_df['observed_frequency'],
               s=np.clip(calibration_df['n'], 10, 200), alpha=0.7,
               label='Observed (binned)')

    x = np.linspace(0, 1, 200)
    ax.plot(x, calibrator.predict_raw(x), color='firebrick',
            label='Calibration curve')
    ax.plot([0, 1], [0, 1], 'k--', linewidth=1, label='Perfect calibration')
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_xlabel('Predicted encounter rate')
    ax.set_ylabel('Observed encounter rate')
    ax.set_title('Calibration')
    ax.legend(loc='upper left')
    ax.grid(alpha=0.3)
    return _save(fig, output_path)


def plot_surface(predictions: pd.DataFrame, output_path,
                 title='Encounter Rate'):
    """Scatter map of grid predictions."""
    colors = ['#ffffff', '#ffffcc', '#ffeda0', '#fed976',
              '#feb24c', '#fd8d3c', '#fc4e2a', '#e31a1c', '#b10026']
    cmap = LinearSegmentedColormap.from_list('encounter_rate', colors, N=100)

    fig, ax = plt.subplots(figsize=(10, 8))
    scatter = ax.scatter(predictions['longitude'], predictions['latitude'],
                         c=predictions['estimate'], cmap=cmap, vmin=0,
                         vmax=max(float(predictions['estimate'].max()), 1e-6),
                         s=12, edgecolors='none')
    cbar = fig.colorbar(scatter, ax=ax, shrink=0.8)
    cbar.set_label('Encounter rate')
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')
    ax.set_title(title)
    ax.set_aspect(1 / np.cos(np.radians(predictions['latitude'].mean())))
    return _save(fig, output_path)
