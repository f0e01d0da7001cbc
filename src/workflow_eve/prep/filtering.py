# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import List, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.prep.schema import require_columns

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# ================================ SAMPLE FILTERING ================================== #

def sample_depths(
    table: pd.DataFrame,
    abundance_columns: List[str]
) -> pd.Series:
    """Total reads per sample over the declared abundance columns.

    Missing values (e.g. rows introduced by an outer join) count as zero.
    """
    require_columns(table, abundance_columns)
    return (
        table[abundance_columns].fillna(0).sum(axis=1)
        .rename(constants.DEFAULT_DEPTH_COLUMN)
    )


def filter_by_depth(
    table: pd.DataFrame,
    abundance_columns: List[str],
    min_depth: float = constants.DEFAULT_MIN_DEPTH,
) -> Tuple[pd.DataFrame, pd.Series]:
    """Keep samples whose total reads strictly exceed `min_depth`.

    The threshold comes from upstream QC (rarefaction) and is not recomputed here.
    Column order is unchanged.

    Args:
        table:             Sample table.
        abundance_columns: Columns summed into the per-sample depth.
        min_depth:         Samples with depth <= min_depth are removed.

    Returns:
        Filtered table and the pre-filter depth of every sample.
    """
    depths = sample_depths(table, abundance_columns)
    mask = depths > min_depth
    filtered = table.loc[mask]
    logger.info(
        f"Depth filter (> {min_depth}): kept {int(mask.sum())}/{len(table)} samples"
    )
    if (~mask).any():
        logger.debug(f"Removed rows at index: {table.index[~mask].tolist()}")
    return filtered, depths
