# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import List, Optional, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.prep.merge import DuplicateReport, find_duplicate_ids
from workflow_eve.prep.schema import require_columns

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# ==================================== FUNCTIONS ===================================== #

def make_composite_id(
    table: pd.DataFrame,
    columns: List[str],
    sep: str = constants.DEFAULT_COMPOSITE_SEPARATOR,
    name: str = constants.DEFAULT_COMPOSITE_ID_COLUMN
) -> pd.DataFrame:
    """Add a row key built from several columns, e.g. genotype + sample id."""
    require_columns(table, columns)
    table = table.copy()
    parts = table[columns].astype(str).where(table[columns].notna(), "NA")
    table[name] = parts.agg(sep.join, axis=1) if len(table) else pd.Series(dtype=str)
    return table


def _merge_values(values: pd.Series, sep: str):
    distinct = []
    for v in values.dropna():
        if v not in distinct:
            distinct.append(v)
    if not distinct:
        return values.iloc[0]
    if len(distinct) == 1:
        return distinct[0]
    return sep.join(str(v) for v in distinct)


def deduplicate(
    table: pd.DataFrame,
    id_column: str,
    policy: str = constants.DEFAULT_DEDUP_POLICY,
    sep: str = constants.DEFAULT_MERGE_SEPARATOR,
    abundance_columns: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, DuplicateReport]:
    """Keep one row per identifier.

    Policies:
        first: first occurrence in the current row order wins
        last:  last occurrence wins
        merge: one row per identifier; abundance columns are summed, and per
               metadata column a single distinct non-null value is kept while
               conflicting values are joined with `sep`

    Which repeated rows are true duplicates (re-genotyping) and which are
    re-sampled individuals cannot be told from the table alone, so every
    duplicated identifier is logged and returned in the report.

    Returns:
        Deduplicated table (surviving rows in their input order) and the report
        of identifiers that were repeated in the input.
    """
    if policy not in constants.DEDUP_POLICIES:
        raise ValueError(
            f"Invalid policy: {policy}. Must be one of {constants.DEDUP_POLICIES}"
        )
    report = find_duplicate_ids(table, id_column)
    if not report:
        return table, report

    logger.warning(
        f"{report.count} '{id_column}' value(s) repeated over {report.n_rows} rows; "
        f"applying '{policy}' policy. Check whether these are genuine duplicates or "
        f"re-sampled individuals: {report.ids[:10]}"
    )

    if policy in ('first', 'last'):
        result = table.loc[~table[id_column].duplicated(keep=policy)]
    else:
        counts = [c for c in (abundance_columns or []) if c != id_column]
        require_columns(table, counts)
        aggregations = {
            c: ('sum' if c in set(counts) else (lambda s: _merge_values(s, sep)))
            for c in table.columns if c != id_column
        }
        result = (
            table.groupby(id_column, sort=False, dropna=False)
            .agg(aggregations)
            .reset_index()
        )
        result = result[table.columns]

    logger.info(f"Deduplicated on '{id_column}': {len(table)} → {len(result)} rows")
    return result, report
