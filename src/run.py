"""
EVE Beta-Shared Microbiome Pipeline
----------------------------------------------------------------------------------------
Prepares microbiome count data for a phylogenetic comparative test and runs the
EVE beta-shared test to flag taxa whose abundance varies across host species
more (highly variable) or less (lineage-specific) than expected under a
shared evolutionary model.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import logging
import sys
import traceback
from pathlib import Path
from typing import Optional

# Third-Party Imports
import pandas as pd

# Local Imports
parent_dir = Path(__file__).resolve().parents[1]
sys.path.append(str(parent_dir))

from workflow_eve import constants
from workflow_eve.config import get_config
from workflow_eve.errors import WorkflowEVEError
from workflow_eve.eve.pipeline import ComparativeTestPipeline
from workflow_eve.logger import setup_logging
from workflow_eve.prep.pipeline import ALIGNED_DATASET, DataPrepPipeline
from workflow_eve.utils.dir_utils import SubDirs

# ========================== INITIALIZATION & CONFIGURATION ========================== #

pd.set_option('display.max_colwidth', None)

# =================================== MAIN WORKFLOW ================================== #

class WorkflowEVE:
    def __init__(
        self,
        config_path: Optional[Path] = constants.DEFAULT_CONFIG_PATH,
        log_dir: Optional[Path] = None,
        verbose: bool = False
    ) -> None:
        self.config = get_config(config_path)
        self.project_dir = SubDirs(self.config["project_dir"])
        self.logger = setup_logging(
            log_dir or self.project_dir.logs,
            console_level=logging.DEBUG if verbose else logging.INFO
        )

    def prep(self) -> DataPrepPipeline:
        self.logger.info("Starting data preparation")
        pipeline = DataPrepPipeline(self.config, project_dir=self.project_dir).run()
        self.logger.info(
            f"Data preparation completed: {len(pipeline.aligned)} samples × "
            f"{len(pipeline.count_columns)} features"
        )
        return pipeline

    def eve(self) -> ComparativeTestPipeline:
        self.logger.info("Starting beta-shared test")
        if self.config["inputs"].get("aligned_table") is None:
            self.config["inputs"]["aligned_table"] = (
                self.project_dir.tables / ALIGNED_DATASET
            )
        pipeline = ComparativeTestPipeline(self.config, project_dir=self.project_dir)
        try:
            pipeline.run()
        except KeyboardInterrupt:
            pipeline.cancel()
            raise
        self.logger.info("Beta-shared test completed")
        return pipeline

    def run(self, command: str = "all") -> int:
        try:
            if command in ("prep", "all"):
                self.prep()
            if command in ("eve", "all"):
                self.eve()
        except WorkflowEVEError as e:
            self.logger.error(str(e))
            return 1
        except FileNotFoundError as e:
            self.logger.error(str(e))
            return 1
        except Exception as e:
            self.logger.critical(f"Workflow execution failed: {e}\n"
                                 f"Traceback: {traceback.format_exc()}")
            return 2
        return 0


def main(argv=None) -> int:
    """Run the workflow from the command line."""
    parser = argparse.ArgumentParser(description="Run the EVE beta-shared workflow.")
    parser.add_argument(
        "command",
        nargs="?",
        choices=["prep", "eve", "all"],
        default="all",
        help="Stage to run: data preparation, beta-shared test, or both.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help="Path to the configuration file.",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for log files (default: <project_dir>/logs).",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug messages on the console.",
    )
    args = parser.parse_args(argv)
    workflow = WorkflowEVE(args.config, log_dir=args.log_dir, verbose=args.verbose)
    return workflow.run(args.command)


if __name__ == "__main__":
    sys.exit(main())
