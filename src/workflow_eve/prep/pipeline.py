# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, List, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError
from workflow_eve.figures.plots import depth_histogram
from workflow_eve.prep.dedup import deduplicate, make_composite_id
from workflow_eve.prep.filtering import filter_by_depth
from workflow_eve.prep.merge import (
    DuplicateReport, MergeReport, align_tables, apply_unmatched_policy,
    attach_auxiliary_metadata
)
from workflow_eve.prep.schema import ColumnRoles, require_identifier
from workflow_eve.prep.taxonomy import Taxonomy, relabel_columns
from workflow_eve.utils.dir_utils import SubDirs
from workflow_eve.utils.io import (
    import_count_table, import_metadata, missing_files, read_table, write_table
)
from workflow_eve.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# ================================= DEFAULT VALUES =================================== #

ALIGNED_DATASET = "aligned_dataset.csv"
COLUMN_ROLES = "column_roles.yaml"
OTU_TABLE = "otu_table.csv"
SAMPLE_DATA = "sample_data.csv"
TAX_TABLE = "tax_table.csv"

# ===================================== PIPELINE ===================================== #

class DataPrepPipeline:
    """
    Counts + metadata + taxonomy → aligned, depth-filtered, deduplicated dataset
    and the phyloseq-style triplet (otu_table, sample_data, tax_table).

    Each stage stores its output on the instance so it can be inspected before
    the next one runs.
    """

    def __init__(
        self,
        config: Dict,
        project_dir: Optional[SubDirs] = None,
        make_figures: Optional[bool] = None
    ):
        self.cfg = config
        self.project_dir = project_dir or SubDirs(config["project_dir"])
        self.id_column = config["columns"]["sample_id"]
        self.make_figures = (
            config["figures"]["enabled"] if make_figures is None else make_figures
        )
        self.outputs: Dict[str, Path] = {}

    # Type hints
    counts: pd.DataFrame
    metadata: pd.DataFrame
    taxonomy: Taxonomy
    count_columns: List[str]
    feature_ids: List[str]
    merged: pd.DataFrame
    merge_report: MergeReport
    aux_reports: Dict[str, MergeReport]
    depths: pd.Series
    filtered: pd.DataFrame
    dedup_report: DuplicateReport
    aligned: pd.DataFrame

    def run(self) -> "DataPrepPipeline":
        steps = [
            ("Loading and validating inputs", self.load),
            ("Attaching auxiliary metadata", self.attach_auxiliary),
            ("Simplifying taxonomy", self.simplify_taxonomy),
            ("Merging counts and metadata", self.merge),
            ("Filtering low-depth samples", self.filter_depth),
            ("Deduplicating samples", self.deduplicate),
            ("Writing outputs", self.write_outputs),
        ]
        with get_progress_bar() as progress:
            task = progress.add_task(
                _format_task_desc("Data preparation"), total=len(steps)
            )
            for description, step in steps:
                progress.update(task, description=_format_task_desc(description))
                logger.debug(f"→ {description}")
                step()
                progress.update(task, advance=1)
        return self

    # ------------------------------------ STAGES ------------------------------------ #

    def load(self) -> None:
        inputs = self.cfg["inputs"]
        required = [inputs.get(k) for k in ("counts", "metadata", "taxonomy")]
        if any(p is None for p in required):
            raise SchemaError(
                "Missing input paths",
                [f"inputs.{k} is not set" for k, p in
                 zip(("counts", "metadata", "taxonomy"), required) if p is None]
            )
        absent = missing_files(required + list(inputs.get("auxiliary_metadata") or []))
        if absent:
            raise FileNotFoundError(f"Input file(s) not found: {[str(p) for p in absent]}")

        self.counts = import_count_table(inputs["counts"], self.id_column)
        self.metadata = import_metadata(inputs["metadata"], self.id_column)
        tax_cfg = self.cfg["taxonomy"]
        self.taxonomy = Taxonomy(
            inputs["taxonomy"],
            species_confidence=tax_cfg["species_confidence"],
            fallback=tax_cfg["fallback"],
        )
        self.validate_inputs()

    def validate_inputs(self) -> None:
        """Schema checks run before any processing."""
        count_roles = ColumnRoles(id_column=self.id_column)
        self.count_columns = count_roles.validate(
            self.counts, integer_counts=True, table_name="count table"
        )
        self.feature_ids = list(self.count_columns)
        require_identifier(self.metadata, self.id_column, "metadata")
        clashes = sorted(set(self.count_columns) & set(self.metadata.columns))
        if clashes:
            raise SchemaError(
                "Feature ids collide with metadata column names", clashes[:10]
            )
        self.taxonomy.validate_against(self.count_columns)

    def attach_auxiliary(self) -> None:
        self.aux_reports = {}
        paths = self.cfg["inputs"].get("auxiliary_metadata") or []
        if not paths:
            return
        auxiliary = {Path(p).stem: read_table(p, id_column=self.id_column) for p in paths}
        self.metadata, self.aux_reports = attach_auxiliary_metadata(
            self.metadata, auxiliary, on=self.id_column
        )

    def simplify_taxonomy(self) -> None:
        unclassified = self.taxonomy.unclassified_ids()
        if unclassified:
            logger.warning(
                f"{len(unclassified)} feature(s) labelled "
                f"'{constants.UNCLASSIFIED_LABEL}': {unclassified[:10]}"
            )
        if not self.cfg["taxonomy"]["relabel_columns"]:
            return
        before = list(self.count_columns)
        self.counts = relabel_columns(
            self.counts, self.taxonomy, before,
            collapse=self.cfg["taxonomy"]["collapse_duplicate_labels"]
        )
        self.count_columns = [c for c in self.counts.columns if c != self.id_column]

    def merge(self) -> None:
        self.merged, self.merge_report = align_tables(
            self.counts, self.metadata, on=self.id_column, names=("counts", "metadata")
        )
        self.merged = apply_unmatched_policy(
            self.merged, self.merge_report, self.cfg["merge"]["unmatched_policy"]
        )

    def filter_depth(self) -> None:
        self.filtered, self.depths = filter_by_depth(
            self.merged, self.count_columns, self.cfg["depth"]["min_depth"]
        )

    def _composite_columns(self, table: pd.DataFrame) -> List[str]:
        columns = list(self.cfg["dedup"]["composite_columns"] or [])
        missing = [c for c in columns if c not in table.columns]
        if missing:
            logger.warning(
                f"Composite id column(s) {missing} not found; "
                f"using '{self.id_column}' alone"
            )
            return [self.id_column]
        return columns or [self.id_column]

    def deduplicate(self) -> None:
        dedup_cfg = self.cfg["dedup"]
        table = make_composite_id(
            self.filtered,
            self._composite_columns(self.filtered),
            sep=dedup_cfg["separator"],
            name=constants.DEFAULT_COMPOSITE_ID_COLUMN,
        )
        # Composite id first, then identifiers, metadata, counts
        front = [constants.DEFAULT_COMPOSITE_ID_COLUMN, self.id_column]
        table = table[front + [c for c in table.columns if c not in front]]
        self.aligned, self.dedup_report = deduplicate(
            table, constants.DEFAULT_COMPOSITE_ID_COLUMN, policy=dedup_cfg["policy"],
            abundance_columns=self.count_columns
        )
        self.aligned = self.aligned.reset_index(drop=True)

    def write_outputs(self) -> Dict[str, Path]:
        tables, reports = self.project_dir.tables, self.project_dir.reports
        key = constants.DEFAULT_COMPOSITE_ID_COLUMN
        metadata_columns = [
            c for c in self.aligned.columns
            if c not in set(self.count_columns) and c != key
        ]

        self.outputs["aligned"] = write_table(self.aligned, tables / ALIGNED_DATASET)
        self.outputs["otu_table"] = write_table(
            self.aligned[[key] + self.count_columns], tables / OTU_TABLE
        )
        self.outputs["sample_data"] = write_table(
            self.aligned[[key] + metadata_columns], tables / SAMPLE_DATA
        )
        tax_cfg = self.cfg["taxonomy"]
        if tax_cfg["relabel_columns"]:
            tax_table = self.taxonomy.to_relabelled_table(
                self.feature_ids, collapse=tax_cfg["collapse_duplicate_labels"]
            )
        else:
            tax_table = self.taxonomy.to_table(self.feature_ids)
        self.outputs["tax_table"] = write_table(tax_table, tables / TAX_TABLE)
        roles = ColumnRoles(
            id_column=key,
            metadata_columns=metadata_columns,
            abundance_columns=list(self.count_columns),
            extra_id_columns=[self.id_column],
        )
        self.outputs["column_roles"] = roles.to_yaml(tables / COLUMN_ROLES)

        self.outputs["merge_report"] = write_table(
            self.merge_report.to_frame(), reports / "merge_unmatched.csv", verbose=False
        )
        for name, report in self.aux_reports.items():
            self.outputs[f"merge_report_{name}"] = write_table(
                report.to_frame(), reports / f"merge_unmatched_{name}.csv", verbose=False
            )
        self.outputs["duplicates"] = write_table(
            self.dedup_report.to_frame(), reports / "duplicated_ids.csv", verbose=False
        )
        self.outputs["unclassified"] = write_table(
            pd.DataFrame({constants.DEFAULT_FEATURE_ID_COLUMN:
                          self.taxonomy.unclassified_ids()}),
            reports / "unclassified_features.csv", verbose=False
        )
        depths = self.merged[[self.id_column]].assign(
            **{constants.DEFAULT_DEPTH_COLUMN: self.depths.values}
        )
        self.outputs["depths"] = write_table(
            depths, reports / "sample_depths.csv", verbose=False
        )
        if self.make_figures and len(self.depths):
            histogram_path = self.project_dir.figures / "depth_histogram.png"
            depth_histogram(
                self.depths,
                min_depth=self.cfg["depth"]["min_depth"],
                bins=self.cfg["depth"]["histogram_bins"],
                output_path=histogram_path,
            )
            self.outputs["depth_histogram"] = histogram_path
        return self.outputs
