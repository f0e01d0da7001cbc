# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

# Third Party Imports
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import seaborn as sns
from scipy.cluster.hierarchy import dendrogram, linkage
from sklearn.decomposition import PCA

# Local Imports
from workflow_eve import constants
from workflow_eve.figures.figures import matplotlib_save, plotly_show_and_save

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')
sns.set_style('whitegrid')

# ================================== PLOT FUNCTIONS ================================== #

def depth_histogram(
    depths: pd.Series,
    min_depth: Optional[float] = constants.DEFAULT_MIN_DEPTH,
    bins: int = constants.DEFAULT_HISTOGRAM_BINS,
    output_path: Union[str, Path, None] = None,
    title: str = "Sequencing depth per sample"
):
    """Histogram of total reads per sample with the depth cut-off marked."""
    fig, ax = plt.subplots(figsize=(8, 5))
    sns.histplot(depths.astype(float), bins=bins, ax=ax, color="#4c72b0")
    if min_depth is not None:
        ax.axvline(min_depth, color="red", linestyle="--",
                   label=f"cut-off = {min_depth:g}")
        ax.legend(loc="upper right")
    ax.set_xlabel("Total reads")
    ax.set_ylabel("Samples")
    ax.set_title(title)
    if output_path:
        matplotlib_save(fig, output_path)
    return fig


def volcano_plot(
    results_df: pd.DataFrame,
    pvalue_threshold: float = constants.DEFAULT_PVALUE_THRESHOLD,
    effect_size_col: str = 'log2_beta_ratio',
    pvalue_col: str = 'pvalue',
    output_path: Union[str, Path, None] = None,
    save_as: List[str] = ['png', 'html'],
    title: str = "Beta-shared test"
) -> go.Figure:
    """Volcano plot of per-taxon beta (relative to the shared beta) against
    -log10(p-value), coloured by category.

    Args:
        results_df:       Classified results indexed by taxon.
        pvalue_threshold: Significance threshold drawn as a dashed line.
        effect_size_col:  Column for the x axis.
        pvalue_col:       Column for p-values.
        output_path:      Base path for saved figure files.
        save_as:          Output formats.
        title:            Plot title.
    """
    plot_df = results_df.copy()
    plot_df['taxon'] = plot_df.index.astype(str)
    pvalues = plot_df[pvalue_col].astype(float).clip(lower=np.finfo(float).tiny)
    plot_df['neg_log10_pvalue'] = -np.log10(pvalues)

    fig = px.scatter(
        plot_df,
        x=effect_size_col,
        y='neg_log10_pvalue',
        color='category',
        color_discrete_map=constants.CATEGORY_COLORS,
        hover_name='taxon',
        hover_data=[c for c in ('beta', 'LRT', pvalue_col) if c in plot_df.columns],
        title=title,
    )
    fig.add_hline(
        y=-np.log10(pvalue_threshold),
        line_dash="dash",
        line_color="red",
        annotation_text=f"p = {pvalue_threshold}"
    )
    fig.add_vline(x=0, line_dash="dot", line_color="black")
    fig.update_layout(
        legend_title_text='Category',
        showlegend=True,
        xaxis_title="log2(beta / shared beta)",
        yaxis_title="-log10(p-value)"
    )
    if output_path:
        plotly_show_and_save(fig, output_path=output_path, save_as=save_as)
    return fig


def sample_pca(
    matrix: pd.DataFrame,
    n_components: int = constants.DEFAULT_N_PCA
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    PCA of samples from a taxa × samples matrix.

    Returns:
        Sample coordinates (PC1..PCn) and explained variance ratios.

    Raises:
        ValueError: With fewer than 2 samples.
    """
    samples = matrix.T
    if len(samples) < 2:
        raise ValueError("At least 2 samples required")
    n_components = min(n_components, len(samples) - 1, samples.shape[1])
    pca = PCA(n_components=n_components)
    coords = pca.fit_transform(samples.to_numpy(dtype=float))
    columns = [f"PC{i + 1}" for i in range(n_components)]
    return (
        pd.DataFrame(coords, index=samples.index, columns=columns),
        pca.explained_variance_ratio_
    )


def pca_scatter(
    matrix: pd.DataFrame,
    groups: Optional[pd.Series] = None,
    output_path: Union[str, Path, None] = None,
    save_as: List[str] = ['png', 'html'],
    title: str = "PCA of log abundances"
) -> go.Figure:
    """Scatter of the first two principal components, coloured by `groups`
    (e.g. species)."""
    coords, ratios = sample_pca(matrix, n_components=2)
    plot_df = coords.copy()
    plot_df['sample'] = plot_df.index.astype(str)
    if groups is not None:
        plot_df['group'] = groups.reindex(coords.index).astype(str).values
    y_col = 'PC2' if 'PC2' in plot_df.columns else 'PC1'
    fig = px.scatter(
        plot_df,
        x='PC1',
        y=y_col,
        color='group' if groups is not None else None,
        hover_name='sample',
        title=title,
    )
    fig.update_layout(
        showlegend=groups is not None,
        xaxis_title=f"PC1 ({ratios[0] * 100:.1f}%)",
        yaxis_title=(
            f"PC2 ({ratios[1] * 100:.1f}%)" if len(ratios) > 1 else "PC1"
        ),
    )
    if output_path:
        plotly_show_and_save(fig, output_path=output_path, save_as=save_as)
    return fig


def dendrogram_plot(
    matrix: pd.DataFrame,
    labels: Optional[pd.Series] = None,
    method: str = constants.DEFAULT_LINKAGE_METHOD,
    metric: str = constants.DEFAULT_LINKAGE_METRIC,
    output_path: Union[str, Path, None] = None,
    title: str = "Sample clustering"
):
    """Hierarchical clustering dendrogram of samples (matrix columns)."""
    samples = matrix.T
    if len(samples) < 2:
        raise ValueError("At least 2 samples required")
    Z = linkage(samples.to_numpy(dtype=float), method=method, metric=metric)
    leaf_labels = (
        [f"{i} ({labels.get(i, '')})" for i in samples.index]
        if labels is not None else
        samples.index.astype(str).tolist()
    )
    fig, ax = plt.subplots(figsize=(max(8, 0.25 * len(samples)), 6))
    dendrogram(Z, labels=leaf_labels, leaf_rotation=90, ax=ax)
    ax.set_title(title)
    ax.set_ylabel(f"{metric} distance ({method} linkage)")
    if output_path:
        matplotlib_save(fig, output_path)
    return fig
