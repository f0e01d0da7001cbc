# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError
from workflow_eve.utils.io import read_table

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ==================================== FUNCTIONS ===================================== #

def parse_ranks(taxonomy: str) -> Dict[str, str]:
    """
    Split a semicolon-delimited classification string into its ranks.

    Args:
        taxonomy: e.g. 'd__Bacteria; p__Firmicutes; ...; g__Lactobacillus; s__reuteri'

    Returns:
        Mapping of rank prefix (d/p/c/o/f/g/s) to name. Segments without a rank
        prefix and segments with an empty name (e.g. 's__') are left out.
    """
    ranks: Dict[str, str] = {}
    if taxonomy is None or pd.isna(taxonomy):
        return ranks
    for segment in str(taxonomy).split(';'):
        segment = segment.strip()
        match = constants.RANK_PREFIX_PATTERN.match(segment)
        if not match:
            continue
        prefix = segment[0]
        name = segment[match.end():].strip()
        if name:
            ranks[prefix] = name
    return ranks


def _as_confidence(value) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return None if np.isnan(value) else value


def simplify_label(
    taxonomy: str,
    confidence,
    species_confidence: float = constants.DEFAULT_SPECIES_CONFIDENCE,
    fallback: str = constants.DEFAULT_TAXONOMY_FALLBACK
) -> str:
    """
    Reduce a full classification string to a short label.

    The species name is used when `confidence >= species_confidence`, the genus name
    otherwise. Rank prefixes ('g__', 's__', ...) are stripped.

    When the wanted rank is absent, `fallback='unclassified'` returns
    'unclassified' and `fallback='deepest'` returns the deepest rank above the
    wanted one that is present. Strings with no usable rank at all are always
    'unclassified'. A missing or unparseable confidence counts as low confidence.
    """
    if fallback not in constants.TAXONOMY_FALLBACKS:
        raise ValueError(
            f"Invalid fallback: {fallback}. Must be one of {constants.TAXONOMY_FALLBACKS}"
        )
    ranks = parse_ranks(taxonomy)
    if not ranks:
        return constants.UNCLASSIFIED_LABEL

    score = _as_confidence(confidence)
    target = 's' if score is not None and score >= species_confidence else 'g'
    if target in ranks:
        return ranks[target]

    if fallback == 'deepest':
        shallower = constants.RANK_PREFIXES[:constants.RANK_PREFIXES.index(target)]
        for prefix in reversed(shallower):
            if prefix in ranks:
                return ranks[prefix]
    return constants.UNCLASSIFIED_LABEL


def unique_labels(labels: Iterable[str]) -> List[str]:
    """Disambiguate repeated labels by appending numerical suffixes.

    Input: ['A', 'B', 'A'] → Output: ['A', 'B', 'A_2']
    """
    seen: Dict[str, int] = {}
    new_labels = []
    for label in labels:
        count = seen.get(label, 0) + 1
        seen[label] = count
        new_labels.append(f"{label}_{count}" if count > 1 else label)
    return new_labels


# ================================== TAXONOMY CLASS ================================== #

class Taxonomy:
    """
    Handler for taxonomic classification data.

    Attributes:
        taxonomy (pd.DataFrame): Parsed taxonomy indexed by feature id with columns:
            - taxonomy:        Raw classification string
            - confidence:      Classification confidence score
            - Domain..Species: Taxonomic levels
            - label:           Simplified label
    """

    def __init__(
        self,
        table: Union[str, Path, pd.DataFrame],
        species_confidence: float = constants.DEFAULT_SPECIES_CONFIDENCE,
        fallback: str = constants.DEFAULT_TAXONOMY_FALLBACK
    ) -> None:
        self.species_confidence = species_confidence
        self.fallback = fallback
        if isinstance(table, pd.DataFrame):
            df = table.copy()
        else:
            df = read_table(table)
        self.taxonomy: pd.DataFrame = self._parse(df)

    def _parse(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.rename(columns={
            old: new for old, new in constants.TAXONOMY_COLUMN_RENAMES.items()
            if old in df.columns
        })
        missing = [c for c in ('id', 'taxonomy', 'confidence') if c not in df.columns]
        if missing:
            raise SchemaError(
                "Schema violation in taxonomy table",
                [f"missing required column '{c}'" for c in missing]
            )
        df['id'] = df['id'].astype(str)
        duplicated = df['id'][df['id'].duplicated()].unique().tolist()
        if duplicated:
            raise SchemaError(
                "Schema violation in taxonomy table",
                [f"{len(duplicated)} feature id(s) classified more than once: "
                 f"{duplicated[:10]}"]
            )
        df = df.set_index('id')
        df['confidence'] = pd.to_numeric(df['confidence'], errors='coerce')

        parsed = df['taxonomy'].apply(parse_ranks)
        for prefix in constants.RANK_PREFIXES:
            df[constants.RANK_NAMES[prefix]] = parsed.apply(lambda r: r.get(prefix))

        df[constants.DEFAULT_LABEL_COLUMN] = [
            simplify_label(t, c, self.species_confidence, self.fallback)
            for t, c in zip(df['taxonomy'], df['confidence'])
        ]
        n_unclassified = int(
            (df[constants.DEFAULT_LABEL_COLUMN] == constants.UNCLASSIFIED_LABEL).sum()
        )
        logger.info(
            f"Parsed {len(df)} taxonomy entries "
            f"({n_unclassified} labelled '{constants.UNCLASSIFIED_LABEL}')"
        )
        return df

    @property
    def labels(self) -> pd.Series:
        return self.taxonomy[constants.DEFAULT_LABEL_COLUMN]

    def label_for(self, feature_id: str) -> Optional[str]:
        """Simplified label for a feature ID, or None if the feature is unknown."""
        return (
            self.taxonomy.loc[feature_id, constants.DEFAULT_LABEL_COLUMN]
            if feature_id in self.taxonomy.index else
            None
        )

    def unclassified_ids(self) -> List[str]:
        """Feature ids whose classification string yielded no usable label."""
        mask = self.labels == constants.UNCLASSIFIED_LABEL
        return self.taxonomy.index[mask].tolist()

    def validate_against(self, feature_ids: Iterable[str]) -> None:
        """
        Check that every count-table column has exactly one taxonomy entry.

        Raises:
            SchemaError: If any feature id is not classified.
        """
        feature_ids = [str(f) for f in feature_ids]
        missing = [f for f in feature_ids if f not in self.taxonomy.index]
        if missing:
            raise SchemaError(
                "Count table columns without a taxonomy entry",
                [f"{len(missing)} feature(s) unclassified: {missing[:10]}"]
            )
        extra = len(set(self.taxonomy.index) - set(feature_ids))
        if extra:
            logger.debug(f"{extra} taxonomy entries have no count-table column")

    def to_table(self, feature_ids: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """Taxonomy table (phyloseq tax_table layout) for export."""
        columns = (
            ['taxonomy', 'confidence']
            + [constants.RANK_NAMES[p] for p in constants.RANK_PREFIXES]
            + [constants.DEFAULT_LABEL_COLUMN]
        )
        df = self.taxonomy[columns]
        if feature_ids is not None:
            df = df.loc[[str(f) for f in feature_ids]]
        return df.rename_axis(constants.DEFAULT_FEATURE_ID_COLUMN).reset_index()

    def to_relabelled_table(
        self,
        feature_ids: Iterable[str],
        collapse: bool = False
    ) -> pd.DataFrame:
        """
        Taxonomy table keyed by the column names `relabel_columns` gives the same
        features, so it stays aligned with a relabelled count table.

        The original ids move to `source_features`. With `collapse`, features
        sharing a label become one row (ranks of the first feature, ids joined
        with '|').
        """
        feature_ids = [str(f) for f in feature_ids]
        df = self.to_table(feature_ids)
        labels = df[constants.DEFAULT_LABEL_COLUMN].tolist()
        df.insert(1, 'source_features', df[constants.DEFAULT_FEATURE_ID_COLUMN])
        if collapse:
            sources = df.groupby(labels, sort=False)['source_features'].agg('|'.join)
            df = df.loc[~pd.Series(labels).duplicated().values].copy()
            df['source_features'] = sources.loc[
                df[constants.DEFAULT_LABEL_COLUMN]
            ].values
            df[constants.DEFAULT_FEATURE_ID_COLUMN] = df[constants.DEFAULT_LABEL_COLUMN]
        else:
            df[constants.DEFAULT_FEATURE_ID_COLUMN] = unique_labels(labels)
        return df.reset_index(drop=True)


def relabel_columns(
    counts: pd.DataFrame,
    taxonomy: Taxonomy,
    abundance_columns: List[str],
    collapse: bool = False
) -> pd.DataFrame:
    """
    Rename abundance columns to their simplified labels.

    Args:
        counts:            Sample table holding the abundance columns.
        taxonomy:          Parsed taxonomy covering every abundance column.
        abundance_columns: Columns to rename.
        collapse:          Sum features sharing a label into one column. Otherwise
                           repeated labels receive numerical suffixes.

    Returns:
        Table with the other columns first, relabelled abundance columns after.
    """
    taxonomy.validate_against(abundance_columns)
    labels = [taxonomy.label_for(str(c)) for c in abundance_columns]
    other = counts[[c for c in counts.columns if c not in set(abundance_columns)]]
    values = counts[abundance_columns]

    if collapse:
        values = values.T.groupby(labels, sort=False).sum().T
        logger.info(
            f"Collapsed {len(abundance_columns)} features into {values.shape[1]} labels"
        )
    else:
        values = values.copy()
        values.columns = unique_labels(labels)
    return pd.concat([other, values], axis=1)
