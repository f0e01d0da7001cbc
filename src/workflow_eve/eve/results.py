# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy import stats

# Local Imports
from workflow_eve import constants
from workflow_eve.eve.delegate import BetaSharedResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ==================================== FUNCTIONS ===================================== #

def lrt_pvalues(lrt: pd.Series, df: int = constants.DEFAULT_LRT_DF) -> pd.Series:
    """Upper-tail chi-square p-values of likelihood-ratio statistics."""
    # Optimiser noise can give slightly negative statistics
    clipped = lrt.astype(float).clip(lower=0)
    return pd.Series(stats.chi2.sf(clipped, df), index=lrt.index, name='pvalue')


def classify_taxon(
    beta: float,
    pvalue: float,
    shared_beta: float,
    threshold: float = constants.DEFAULT_PVALUE_THRESHOLD
) -> Tuple[str, bool, str]:
    """
    Classify one taxon against the shared beta.

    Returns:
        (type, significant, category) where type is 'lineage-specific' if
        beta < shared_beta else 'highly variable', significant is
        pvalue <= threshold, and category is type when significant else
        'not significant'.
    """
    taxon_type = (
        constants.TYPE_LINEAGE_SPECIFIC if beta < shared_beta
        else constants.TYPE_HIGHLY_VARIABLE
    )
    significant = bool(pvalue <= threshold)
    category = taxon_type if significant else constants.CATEGORY_NOT_SIGNIFICANT
    return taxon_type, significant, category


def classify_results(
    result: BetaSharedResult,
    threshold: float = constants.DEFAULT_PVALUE_THRESHOLD,
    df: int = constants.DEFAULT_LRT_DF
) -> pd.DataFrame:
    """
    Per-taxon result table: fitted parameters, LRT, p-value and classification.
    Taxa are ordered by p-value.
    """
    table = result.to_frame()
    table['pvalue'] = lrt_pvalues(table['LRT'], df=df)
    classified = [
        classify_taxon(b, p, result.shared_beta, threshold)
        for b, p in zip(table['beta'].astype(float), table['pvalue'])
    ]
    table['type'] = [c[0] for c in classified]
    table['significant'] = [c[1] for c in classified]
    table['category'] = [c[2] for c in classified]
    with np.errstate(divide='ignore', invalid='ignore'):
        table['log2_beta_ratio'] = np.log2(
            table['beta'].astype(float) / result.shared_beta
        )
    table = table.sort_values('pvalue', kind='mergesort')

    counts = table['category'].value_counts().to_dict()
    logger.info(
        f"Classified {len(table)} taxa at p ≤ {threshold}: "
        + ", ".join(f"{k}={v}" for k, v in counts.items())
    )
    return table


def attach_abundances(
    results: pd.DataFrame,
    matrix: pd.DataFrame
) -> pd.DataFrame:
    """Append each taxon's log abundances (one column per sample)."""
    return results.join(matrix, how='left')


def split_by_category(results: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """Significant highly-variable and lineage-specific subsets."""
    return {
        'highly_variable': results[
            results['category'] == constants.TYPE_HIGHLY_VARIABLE
        ],
        'lineage_specific': results[
            results['category'] == constants.TYPE_LINEAGE_SPECIFIC
        ],
    }


def category_metadata(
    subset: pd.DataFrame,
    taxonomy: pd.DataFrame,
    label_column: str = constants.DEFAULT_LABEL_COLUMN
) -> pd.DataFrame:
    """
    Taxonomy rows for a result subset. Result taxa are matched on the taxonomy
    label when columns were relabelled, on the feature id otherwise.
    """
    id_column = constants.DEFAULT_FEATURE_ID_COLUMN
    taxa = set(subset.index.astype(str))
    by_id = taxonomy[taxonomy[id_column].astype(str).isin(taxa)]
    if len(by_id):
        return by_id.reset_index(drop=True)
    return taxonomy[taxonomy[label_column].astype(str).isin(taxa)].reset_index(drop=True)
