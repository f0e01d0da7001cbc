# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.prep.schema import require_columns

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ===================================== REPORTS ====================================== #

@dataclass
class DuplicateReport:
    """Identifiers occurring on more than one row of a table."""
    column: str
    ids: List[str] = field(default_factory=list)
    n_rows: int = 0

    @property
    def count(self) -> int:
        return len(self.ids)

    def __bool__(self) -> bool:
        return bool(self.ids)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({self.column: self.ids})


@dataclass
class MergeReport:
    """Which identifiers of a two-table join found a partner and which did not."""
    on: str
    left_name: str
    right_name: str
    only_left: List[str] = field(default_factory=list)
    only_right: List[str] = field(default_factory=list)
    matched: List[str] = field(default_factory=list)
    left_duplicates: Optional[DuplicateReport] = None
    right_duplicates: Optional[DuplicateReport] = None

    @property
    def unmatched(self) -> List[str]:
        """Symmetric difference of the two identifier sets."""
        return sorted(set(self.only_left) | set(self.only_right))

    @property
    def is_clean(self) -> bool:
        return not self.unmatched and not self.left_duplicates and not self.right_duplicates

    def to_frame(self) -> pd.DataFrame:
        rows = (
            [{self.on: i, 'status': f"only_in_{self.left_name}"} for i in self.only_left]
            + [{self.on: i, 'status': f"only_in_{self.right_name}"} for i in self.only_right]
        )
        return pd.DataFrame(rows, columns=[self.on, 'status'])

    def summary(self) -> str:
        return (
            f"{len(self.matched)} matched, "
            f"{len(self.only_left)} only in {self.left_name}, "
            f"{len(self.only_right)} only in {self.right_name}"
        )


# ==================================== FUNCTIONS ===================================== #

def find_duplicate_ids(df: pd.DataFrame, id_column: str) -> DuplicateReport:
    """List identifiers that appear on more than one row."""
    require_columns(df, [id_column])
    mask = df[id_column].duplicated(keep=False)
    ids = df.loc[mask, id_column].astype(str).drop_duplicates().tolist()
    return DuplicateReport(column=id_column, ids=ids, n_rows=int(mask.sum()))


def align_tables(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: str = constants.DEFAULT_SAMPLE_ID_COLUMN,
    how: str = 'outer',
    names: Tuple[str, str] = ('counts', 'metadata')
) -> Tuple[pd.DataFrame, MergeReport]:
    """
    Join two sample tables on a shared identifier column.

    Duplicate identifiers within either table are reported (and logged) rather than
    collapsed; unmatched identifiers from both sides are enumerated in the report
    before any row is dropped.

    Args:
        left, right: Tables sharing the `on` column.
        on:          Identifier column.
        how:         Join type passed to `pd.merge`; 'outer' keeps every row.
        names:       Names used for the two tables in logs and reports.

    Returns:
        Merged table (left columns first) and the MergeReport.
    """
    left_name, right_name = names
    require_columns(left, [on], left_name)
    require_columns(right, [on], right_name)

    left = left.copy()
    right = right.copy()
    left[on] = left[on].astype(str)
    right[on] = right[on].astype(str)

    left_dups = find_duplicate_ids(left, on)
    right_dups = find_duplicate_ids(right, on)
    for name, dups in ((left_name, left_dups), (right_name, right_dups)):
        if dups:
            logger.warning(
                f"{dups.count} duplicated '{on}' value(s) in {name} "
                f"({dups.n_rows} rows): {dups.ids[:10]}"
            )

    left_ids = pd.Index(left[on].unique())
    right_ids = pd.Index(right[on].unique())
    report = MergeReport(
        on=on,
        left_name=left_name,
        right_name=right_name,
        only_left=left_ids.difference(right_ids, sort=False).tolist(),
        only_right=right_ids.difference(left_ids, sort=False).tolist(),
        matched=left_ids.intersection(right_ids, sort=False).tolist(),
        left_duplicates=left_dups,
        right_duplicates=right_dups,
    )

    overlap = (set(left.columns) & set(right.columns)) - {on}
    if overlap:
        logger.debug(f"Columns present in both tables: {sorted(overlap)}")

    merged = pd.merge(
        left, right, on=on, how=how, sort=False,
        suffixes=(f"_{left_name}", f"_{right_name}")
    )
    logger.info(f"Merged {left_name} + {right_name} on '{on}': {report.summary()}")
    if report.unmatched:
        logger.debug(f"Unmatched '{on}' values: {report.unmatched}")
    return merged, report


def apply_unmatched_policy(
    merged: pd.DataFrame,
    report: MergeReport,
    policy: str = constants.DEFAULT_UNMATCHED_POLICY
) -> pd.DataFrame:
    """
    Resolve unmatched identifiers after an outer join.

    Policies:
        keep:            keep every row
        drop:            drop identifiers missing from either table
        drop_left_only:  drop identifiers present only in the left table
        drop_right_only: drop identifiers present only in the right table
    """
    if policy not in constants.UNMATCHED_POLICIES:
        raise ValueError(
            f"Invalid policy: {policy}. Must be one of {constants.UNMATCHED_POLICIES}"
        )
    drop: List[str] = []
    if policy in ('drop', 'drop_left_only'):
        drop += report.only_left
    if policy in ('drop', 'drop_right_only'):
        drop += report.only_right
    if not drop:
        return merged

    kept = merged[~merged[report.on].astype(str).isin(set(drop))]
    logger.info(
        f"Unmatched policy '{policy}': dropped {len(merged) - len(kept)} row(s), "
        f"{len(kept)} remain"
    )
    return kept.reset_index(drop=True)


def attach_auxiliary_metadata(
    metadata: pd.DataFrame,
    auxiliary: Dict[str, pd.DataFrame],
    on: str = constants.DEFAULT_SAMPLE_ID_COLUMN
) -> Tuple[pd.DataFrame, Dict[str, MergeReport]]:
    """
    Left-join additional metadata tables (e.g. collaborator sheets) onto the sample
    metadata. Columns already present are suffixed with the auxiliary table name.

    Returns:
        Extended metadata and one MergeReport per auxiliary table.
    """
    reports: Dict[str, MergeReport] = {}
    result = metadata.copy()
    result[on] = result[on].astype(str)
    for name, aux in auxiliary.items():
        require_columns(aux, [on], name)
        aux = aux.copy()
        aux[on] = aux[on].astype(str)
        aux = aux.rename(columns={
            c: f"{c}_{name}" for c in aux.columns if c != on and c in result.columns
        })
        merged, report = align_tables(result, aux, on=on, how='left',
                                      names=('metadata', name))
        if report.right_duplicates:
            logger.warning(
                f"Auxiliary table '{name}' repeats identifiers; metadata rows for "
                f"{report.right_duplicates.ids[:10]} will be repeated"
            )
        result = merged
        reports[name] = report
    return result, reports
