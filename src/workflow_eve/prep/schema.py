# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import re
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

# Third-Party Imports
import pandas as pd
import yaml

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# =================================== COLUMN ROLES =================================== #

@dataclass
class ColumnRoles:
    """
    Explicit declaration of which columns of a sample table are identifiers, which
    are metadata and which hold abundance values.

    Abundance columns are taken from `abundance_columns` when given, otherwise
    selected with `abundance_prefix` or `abundance_regex`. When none of the three is
    set, every column that is neither the identifier nor a declared metadata column
    is treated as an abundance column.
    """
    id_column: str = constants.DEFAULT_SAMPLE_ID_COLUMN
    metadata_columns: Optional[List[str]] = None
    abundance_columns: Optional[List[str]] = None
    abundance_prefix: Optional[str] = None
    abundance_regex: Optional[str] = None
    extra_id_columns: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, columns_cfg: Dict[str, Any]) -> "ColumnRoles":
        return cls(
            id_column=columns_cfg.get("sample_id") or constants.DEFAULT_SAMPLE_ID_COLUMN,
            metadata_columns=columns_cfg.get("metadata"),
            abundance_columns=columns_cfg.get("abundance"),
            abundance_prefix=columns_cfg.get("abundance_prefix"),
            abundance_regex=columns_cfg.get("abundance_regex"),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ColumnRoles":
        with open(path, "r") as handle:
            data = yaml.safe_load(handle) or {}
        return cls(**data)

    def to_yaml(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as handle:
            yaml.safe_dump(asdict(self), handle, sort_keys=False)
        return path

    @property
    def declares_abundance(self) -> bool:
        return bool(
            self.abundance_columns or self.abundance_prefix or self.abundance_regex
        )

    def _id_like(self) -> List[str]:
        return [self.id_column] + list(self.extra_id_columns)

    def resolve_abundance(self, df: pd.DataFrame) -> List[str]:
        """Return the abundance columns of `df` in their current order."""
        if self.abundance_columns:
            return list(self.abundance_columns)
        id_like = set(self._id_like())
        if self.abundance_prefix:
            return [
                c for c in df.columns
                if str(c).startswith(self.abundance_prefix) and c not in id_like
            ]
        if self.abundance_regex:
            pattern = re.compile(self.abundance_regex)
            return [
                c for c in df.columns
                if pattern.search(str(c)) and c not in id_like
            ]
        excluded = id_like | set(self.metadata_columns or [])
        return [c for c in df.columns if c not in excluded]

    def resolve_metadata(self, df: pd.DataFrame) -> List[str]:
        if self.metadata_columns is not None:
            return list(self.metadata_columns)
        excluded = set(self._id_like()) | set(self.resolve_abundance(df))
        return [c for c in df.columns if c not in excluded]

    def validate(
        self,
        df: pd.DataFrame,
        require_abundance: bool = True,
        integer_counts: bool = False,
        table_name: str = "table"
    ) -> List[str]:
        """
        Check `df` against the declared roles and return the abundance columns.

        Raises:
            SchemaError: If the identifier column is missing or has unusable values,
                         if a declared column is absent, if roles overlap or if an
                         abundance column is non-numeric or negative.
        """
        problems: List[str] = identifier_problems(df, self.id_column)

        for col in self.extra_id_columns:
            if col not in df.columns:
                problems.append(f"missing identifier column '{col}'")

        if self.metadata_columns is not None:
            missing = [c for c in self.metadata_columns if c not in df.columns]
            if missing:
                problems.append(f"missing metadata column(s): {missing}")

        abundance = self.resolve_abundance(df)
        missing = [c for c in abundance if c not in df.columns]
        if missing:
            problems.append(f"missing abundance column(s): {missing}")
        if require_abundance and not abundance:
            problems.append("no abundance columns selected")

        overlap = set(abundance) & (
            set(self._id_like()) | set(self.metadata_columns or [])
        )
        if overlap:
            problems.append(f"column(s) declared with more than one role: {sorted(overlap)}")

        present = [c for c in abundance if c in df.columns]
        non_numeric = [
            c for c in present if not pd.api.types.is_numeric_dtype(df[c])
        ]
        if non_numeric:
            problems.append(f"non-numeric abundance column(s): {non_numeric[:10]}")
        else:
            values = df[present]
            if (values < 0).any().any():
                problems.append("negative abundance values")
            if integer_counts and not values.dropna().apply(
                lambda s: (s % 1 == 0).all()
            ).all():
                problems.append("abundance values are not integer counts")

        if problems:
            raise SchemaError(f"Schema violation in {table_name}", problems)

        logger.debug(
            f"{table_name}: {len(df)} rows, {len(abundance)} abundance columns"
        )
        return abundance


def require_columns(
    df: pd.DataFrame,
    columns: List[str],
    table_name: str = "table"
) -> None:
    """Raise SchemaError listing every column of `columns` absent from `df`."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaError(
            f"Schema violation in {table_name}",
            [f"missing required column '{c}'" for c in missing]
        )


def identifier_problems(df: pd.DataFrame, id_column: str) -> List[str]:
    """Problems with a table's identifier column (absent, empty, or float-typed)."""
    if id_column not in df.columns:
        return [f"missing identifier column '{id_column}'"]
    problems = []
    ids = df[id_column]
    if ids.isna().any():
        problems.append(f"{int(ids.isna().sum())} row(s) with an empty '{id_column}'")
    if pd.api.types.is_float_dtype(ids):
        problems.append(
            f"identifier column '{id_column}' is floating point; "
            "identifiers must be strings or integers"
        )
    return problems


def require_identifier(
    df: pd.DataFrame,
    id_column: str,
    table_name: str = "table"
) -> None:
    """Raise SchemaError if the identifier column is unusable."""
    problems = identifier_problems(df, id_column)
    if problems:
        raise SchemaError(f"Schema violation in {table_name}", problems)
