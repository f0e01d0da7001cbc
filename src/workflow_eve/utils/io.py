# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

# Third-Party Imports
import pandas as pd
from biom import load_table
from skbio import TreeNode

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ==================================== FUNCTIONS ===================================== #

def _separator(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes]
    return '\t' if ('.tsv' in suffixes or '.txt' in suffixes) else ','


def missing_files(paths: Iterable[Union[str, Path]]) -> List[Path]:
    return [Path(p) for p in paths if not Path(p).exists()]


def read_table(
    path: Union[str, Path],
    id_column: Optional[str] = None,
    **read_kwargs
) -> pd.DataFrame:
    """
    Read a CSV/TSV table, picking the separator from the file extension.

    Args:
        path:      Input file.
        id_column: If given, the column is read as strings so identifiers such as
                   '001' keep their leading zeros.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    dtype = {id_column: str} if id_column else None
    df = pd.read_csv(path, sep=_separator(path), dtype=dtype, **read_kwargs)
    df.columns = [str(c).strip() for c in df.columns]
    logger.debug(f"Loaded '{path.name}' with shape {df.shape}")
    return df


def write_table(
    df: pd.DataFrame,
    path: Union[str, Path],
    index: bool = False,
    verbose: bool = True
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep=_separator(path), index=index)
    if verbose:
        logger.info(f"Wrote {len(df)} rows → '{path}'")
    return path


def import_count_table(
    path: Union[str, Path],
    id_column: str = constants.DEFAULT_SAMPLE_ID_COLUMN
) -> pd.DataFrame:
    """
    Load a per-sample count table (samples as rows, features as columns).

    CSV/TSV tables must carry the sample identifier in `id_column`, or in their
    first column (which is then renamed). BIOM tables (features × samples) are
    transposed.
    """
    path = Path(path)
    if path.suffix.lower() == '.biom':
        table = load_table(str(path))
        df = table.to_dataframe(dense=True).T
        df.index = df.index.astype(str)
        df.index.name = id_column
        df = df.reset_index()
        logger.debug(f"Loaded BIOM table '{path.name}' with shape {df.shape}")
        return df

    df = read_table(path)
    if id_column not in df.columns:
        first = df.columns[0]
        logger.debug(f"Using first column '{first}' of '{path.name}' as '{id_column}'")
        df = df.rename(columns={first: id_column})
    df[id_column] = df[id_column].astype(str)
    return df


def import_metadata(
    path: Union[str, Path],
    id_column: str = constants.DEFAULT_SAMPLE_ID_COLUMN
) -> pd.DataFrame:
    """Load a sample metadata table, requiring the identifier column."""
    df = read_table(path, id_column=id_column)
    if id_column not in df.columns:
        raise SchemaError(
            f"Schema violation in metadata '{Path(path).name}'",
            [f"missing identifier column '{id_column}'"]
        )
    return df


def import_tree(path: Union[str, Path]) -> TreeNode:
    """Read a rooted Newick tree, keeping underscores in tip names."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tree not found: {path}")
    tree = TreeNode.read(str(path), format='newick', convert_underscores=False)
    logger.debug(f"Loaded tree '{path.name}' with {tree.count(tips=True)} tips")
    return tree
