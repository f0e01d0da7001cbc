# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

# Third-Party Imports
import pandas as pd
from skbio import TreeNode

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError
from workflow_eve.eve.delegate import (
    BetaSharedResult, Delegate, RscriptBetaSharedTest, run_beta_shared_test
)
from workflow_eve.eve.inputs import EVEInputs, build_eve_inputs
from workflow_eve.eve.results import (
    attach_abundances, category_metadata, classify_results, split_by_category
)
from workflow_eve.figures.figures import plotly_show_and_save
from workflow_eve.figures.plots import dendrogram_plot, pca_scatter, volcano_plot
from workflow_eve.prep.pipeline import COLUMN_ROLES, TAX_TABLE
from workflow_eve.prep.schema import ColumnRoles
from workflow_eve.utils.dir_utils import SubDirs
from workflow_eve.utils.io import import_tree, read_table, write_table

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# ===================================== PIPELINE ===================================== #

class ComparativeTestPipeline:
    """
    Aligned dataset + species tree → beta-shared test → classified per-taxon
    results, significant subsets and figures.

    Args:
        config:       Configuration dictionary.
        delegate:     Callable running the test on EVEInputs; defaults to
                      RscriptBetaSharedTest in a fresh job directory.
        project_dir:  Output directory structure.
        cancel_event: Set from another thread to cancel a running job.
    """

    def __init__(
        self,
        config: Dict,
        delegate: Optional[Delegate] = None,
        project_dir: Optional[SubDirs] = None,
        cancel_event: Optional[threading.Event] = None,
        make_figures: Optional[bool] = None
    ):
        self.cfg = config
        self.eve_cfg = config["eve"]
        self.project_dir = project_dir or SubDirs(config["project_dir"])
        self.cancel_event = cancel_event or threading.Event()
        self.job_id = datetime.now().strftime("beta_shared_%Y%m%d_%H%M%S")
        self.delegate = delegate or self._default_delegate()
        self.make_figures = (
            config["figures"]["enabled"] if make_figures is None else make_figures
        )
        self.outputs: Dict[str, Path] = {}

    # Type hints
    table: pd.DataFrame
    roles: ColumnRoles
    tree: TreeNode
    inputs: EVEInputs
    result: BetaSharedResult
    results: pd.DataFrame
    subsets: Dict[str, pd.DataFrame]

    def _default_delegate(self) -> RscriptBetaSharedTest:
        return RscriptBetaSharedTest(
            job_dir=self.project_dir.job_dir(self.job_id),
            rscript=self.eve_cfg["rscript"],
            timeout=self.eve_cfg["timeout"],
            poll_interval=self.eve_cfg["poll_interval"],
            cancel_event=self.cancel_event,
        )

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self) -> "ComparativeTestPipeline":
        self.load()
        self.prepare()
        self.test()
        self.classify()
        self.write_outputs()
        return self

    # ------------------------------------ STAGES ------------------------------------ #

    def _resolve_roles(self, aligned_path: Path) -> ColumnRoles:
        columns_cfg = dict(self.cfg["columns"])
        columns_cfg["sample_id"] = self.eve_cfg["id_column"]
        roles = ColumnRoles.from_config(columns_cfg)
        if roles.declares_abundance:
            return roles
        roles_path = aligned_path.parent / COLUMN_ROLES
        if roles_path.exists():
            logger.info(f"Using column roles from '{roles_path}'")
            return ColumnRoles.from_yaml(roles_path)
        raise SchemaError(
            "Abundance columns of the aligned dataset are not declared",
            [f"set columns.abundance / abundance_prefix / abundance_regex, "
             f"or provide '{roles_path.name}' next to the dataset"]
        )

    def load(self) -> None:
        inputs = self.cfg["inputs"]
        aligned_path = inputs.get("aligned_table") or (
            self.project_dir.tables / "aligned_dataset.csv"
        )
        aligned_path = Path(aligned_path)
        if inputs.get("tree") is None:
            raise SchemaError("Missing input paths", ["inputs.tree is not set"])

        self.roles = self._resolve_roles(aligned_path)
        self.table = read_table(aligned_path, id_column=self.roles.id_column)
        self.abundance_columns = self.roles.validate(
            self.table, table_name=aligned_path.name
        )
        self.tree = import_tree(inputs["tree"])

    def prepare(self) -> None:
        self.inputs = build_eve_inputs(
            self.table,
            self.abundance_columns,
            self.tree,
            species_column=self.eve_cfg["species_column"],
            id_column=self.roles.id_column,
            log_base=self.eve_cfg["log_base"],
            pseudocount=self.eve_cfg["pseudocount"],
        )

    def test(self) -> None:
        self.result = run_beta_shared_test(self.inputs, self.delegate)

    def classify(self) -> None:
        res_cfg = self.cfg["results"]
        classified = classify_results(
            self.result, threshold=res_cfg["pvalue_threshold"], df=res_cfg["lrt_df"]
        )
        self.results = attach_abundances(classified, self.inputs.matrix)
        self.subsets = split_by_category(self.results)

    def _taxonomy_table(self) -> Optional[pd.DataFrame]:
        aligned = self.cfg["inputs"].get("aligned_table")
        candidates: List[Path] = [self.project_dir.tables / TAX_TABLE]
        if aligned:
            candidates.insert(0, Path(aligned).parent / TAX_TABLE)
        for path in candidates:
            if path.exists():
                return read_table(path, id_column=constants.DEFAULT_FEATURE_ID_COLUMN)
        return None

    def _save_figure(self, name: str, fig, output_path: Path) -> None:
        # The PNG needs kaleido; when it cannot be written the HTML still is
        written = plotly_show_and_save(fig, output_path=output_path)
        for path in written:
            self.outputs[f"{name}_{path.suffix.lstrip('.')}"] = path
        if written:
            self.outputs[name] = written[0]

    def write_outputs(self) -> Dict[str, Path]:
        out = self.project_dir.eve_results
        self.outputs["results"] = write_table(
            self.results.rename_axis('taxon').reset_index(), out / "beta_shared_results.csv"
        )
        taxonomy = self._taxonomy_table()
        for name, subset in self.subsets.items():
            self.outputs[name] = write_table(
                subset.rename_axis('taxon').reset_index(), out / f"{name}.csv"
            )
            if taxonomy is not None:
                self.outputs[f"{name}_taxonomy"] = write_table(
                    category_metadata(subset, taxonomy), out / f"{name}_taxonomy.csv",
                    verbose=False
                )

        if self.make_figures:
            figures = self.project_dir.figures
            threshold = self.cfg["results"]["pvalue_threshold"]
            self._save_figure(
                "volcano_plot",
                volcano_plot(self.results, pvalue_threshold=threshold),
                figures / "volcano_plot"
            )
            if self.cfg["figures"]["pca"] and self.inputs.n_samples >= 2:
                self._save_figure(
                    "pca_scatter",
                    pca_scatter(self.inputs.matrix, groups=self.inputs.species),
                    figures / "pca_scatter"
                )
            if self.cfg["figures"]["dendrogram"] and self.inputs.n_samples >= 2:
                dendrogram_plot(self.inputs.matrix, labels=self.inputs.species,
                                output_path=figures / "sample_dendrogram.png")
                self.outputs["dendrogram"] = figures / "sample_dendrogram.png"
        return self.outputs
