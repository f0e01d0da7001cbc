# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio import TreeNode

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import PreconditionError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ====================================== TYPES ======================================= #

@dataclass
class EVEInputs:
    """
    Inputs of the beta-shared test.

    Attributes:
        tree:    Rooted species tree with branch lengths.
        matrix:  Taxa × samples matrix of log abundances.
        species: Species label of every matrix column, indexed by column id in the
                 same order as `matrix.columns`.
    """
    tree: TreeNode
    matrix: pd.DataFrame
    species: pd.Series

    @property
    def tip_names(self) -> List[str]:
        return [tip.name for tip in self.tree.tips()]

    @property
    def n_taxa(self) -> int:
        return self.matrix.shape[0]

    @property
    def n_samples(self) -> int:
        return self.matrix.shape[1]

    def write(self, out_dir: Union[str, Path]) -> dict:
        """Write tree, matrix and species vector for an external routine."""
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        paths = {
            'tree': out_dir / 'tree.nwk',
            'matrix': out_dir / 'matrix.csv',
            'species': out_dir / 'species.csv',
        }
        self.tree.write(str(paths['tree']), format='newick')
        self.matrix.rename_axis('taxon').to_csv(paths['matrix'])
        self.species.rename('species').rename_axis('sample').to_csv(paths['species'])
        return paths


# ==================================== FUNCTIONS ===================================== #

def log_transform(
    values: pd.DataFrame,
    base: Optional[float] = constants.DEFAULT_LOG_BASE,
    pseudocount: float = constants.DEFAULT_PSEUDOCOUNT
) -> pd.DataFrame:
    """log_base(values + pseudocount); natural log when `base` is None."""
    with np.errstate(divide='ignore', invalid='ignore'):
        logged = np.log(values.astype(float) + pseudocount)
        if base is not None:
            logged = logged / np.log(base)
    return logged


def build_eve_inputs(
    table: pd.DataFrame,
    abundance_columns: List[str],
    tree: TreeNode,
    species_column: str = constants.DEFAULT_SPECIES_COLUMN,
    id_column: str = constants.DEFAULT_COMPOSITE_ID_COLUMN,
    log_base: Optional[float] = constants.DEFAULT_LOG_BASE,
    pseudocount: float = constants.DEFAULT_PSEUDOCOUNT,
    validate: bool = True
) -> EVEInputs:
    """
    Turn a samples × taxa table into the taxa × samples log matrix and the
    column-aligned species vector.

    Args:
        table:             Aligned sample table.
        abundance_columns: Taxon columns to test.
        tree:              Species tree; tip names must match `species_column`.
        species_column:    Column holding each sample's species.
        id_column:         Row key used as matrix column name.
        log_base:          Base of the log transform (None for natural log).
        pseudocount:       Added before taking logs.
        validate:          Run `validate_eve_inputs` before returning.

    Raises:
        PreconditionError: If required columns are missing or the inputs fail
                           validation.
    """
    missing = [
        c for c in [id_column, species_column] + list(abundance_columns)
        if c not in table.columns
    ]
    if missing:
        raise PreconditionError(
            "Comparative test input is missing columns", [f"'{c}'" for c in missing[:10]]
        )
    no_species = table[species_column].isna()
    if no_species.any():
        raise PreconditionError(
            "Samples without a species label",
            table.loc[no_species, id_column].astype(str).tolist()[:10]
        )

    ids = table[id_column].astype(str)
    values = table[list(abundance_columns)]
    non_numeric = [
        c for c in values.columns if not pd.api.types.is_numeric_dtype(values[c])
    ]
    if non_numeric:
        raise PreconditionError(
            "Non-numeric abundance columns", [str(c) for c in non_numeric[:10]]
        )

    logged = log_transform(values, base=log_base, pseudocount=pseudocount)
    logged.index = ids.values
    matrix = logged.T
    matrix.index = matrix.index.astype(str)
    species = pd.Series(
        table[species_column].astype(str).values, index=ids.values, name='species'
    )

    inputs = EVEInputs(tree=tree, matrix=matrix, species=species)
    logger.info(
        f"Prepared beta-shared input: {inputs.n_taxa} taxa × {inputs.n_samples} "
        f"samples across {species.nunique()} species"
    )
    if validate:
        validate_eve_inputs(inputs)
    return inputs


def validate_eve_inputs(inputs: EVEInputs) -> None:
    """
    Check every condition the external routine relies on.

    Raises:
        PreconditionError: Listing all violations: species labels absent from the
                           tree, tips without samples, duplicated tip or column
                           names, missing branch lengths, non-finite values, or a
                           species vector not aligned with the matrix columns.
    """
    problems: List[str] = []
    matrix, species, tree = inputs.matrix, inputs.species, inputs.tree

    tips = inputs.tip_names
    if len(tips) < 2:
        problems.append(f"tree has {len(tips)} tip(s); at least 2 are required")
    dup_tips = sorted({t for t in tips if tips.count(t) > 1})
    if dup_tips:
        problems.append(f"duplicated tip labels: {dup_tips}")
    if any(t is None for t in tips):
        problems.append("tree has unnamed tips")
    no_length = [
        node.name or '<internal>' for node in tree.traverse(include_self=False)
        if node.length is None
    ]
    if no_length:
        problems.append(f"{len(no_length)} branch(es) without length: {no_length[:5]}")

    tip_set = set(tips)
    unknown = sorted(set(species) - tip_set)
    if unknown:
        problems.append(f"species labels not in tree: {unknown[:10]}")
    unsampled = sorted(t for t in tip_set - set(species) if t is not None)
    if unsampled:
        problems.append(f"tree tips without samples: {unsampled[:10]}")

    if len(species) != matrix.shape[1]:
        problems.append(
            f"species vector has {len(species)} entries for {matrix.shape[1]} columns"
        )
    elif list(species.index) != list(matrix.columns):
        problems.append("species vector order differs from matrix column order")
    if matrix.columns.duplicated().any():
        dups = matrix.columns[matrix.columns.duplicated()].unique().tolist()
        problems.append(f"duplicated sample columns: {dups[:10]}")

    if matrix.shape[0] == 0:
        problems.append("matrix has no taxa")
    else:
        try:
            values = matrix.to_numpy(dtype=float)
        except (TypeError, ValueError):
            problems.append("matrix contains non-numeric values")
        else:
            finite = np.isfinite(values)
            if not finite.all():
                bad_taxa = matrix.index[~finite.all(axis=1)].tolist()
                problems.append(
                    f"{int((~finite).sum())} missing/non-finite value(s) in taxa "
                    f"{bad_taxa[:10]}"
                )

    if problems:
        for problem in problems:
            logger.error(problem)
        raise PreconditionError("Beta-shared test preconditions not met", problems)
    logger.debug("Beta-shared test inputs validated")

