# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import yaml

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import SchemaError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("workflow_eve")

# ================================= DEFAULT VALUES =================================== #

DEFAULTS: Dict[str, Any] = {
    "project_dir": str(constants.DEFAULT_PROJECT_DIR),
    "inputs": {
        "counts": None,
        "metadata": None,
        "taxonomy": None,
        "auxiliary_metadata": [],
        "aligned_table": None,
        "tree": None,
    },
    "columns": {
        "sample_id": constants.DEFAULT_SAMPLE_ID_COLUMN,
        "metadata": None,
        "abundance": None,
        "abundance_prefix": None,
        "abundance_regex": None,
    },
    "taxonomy": {
        "species_confidence": constants.DEFAULT_SPECIES_CONFIDENCE,
        "fallback": constants.DEFAULT_TAXONOMY_FALLBACK,
        "relabel_columns": False,
        "collapse_duplicate_labels": False,
    },
    "merge": {
        "unmatched_policy": constants.DEFAULT_UNMATCHED_POLICY,
    },
    "depth": {
        "min_depth": constants.DEFAULT_MIN_DEPTH,
        "histogram_bins": constants.DEFAULT_HISTOGRAM_BINS,
    },
    "dedup": {
        "policy": constants.DEFAULT_DEDUP_POLICY,
        "composite_columns": [
            constants.DEFAULT_GENOTYPE_COLUMN, constants.DEFAULT_SAMPLE_ID_COLUMN
        ],
        "separator": constants.DEFAULT_COMPOSITE_SEPARATOR,
    },
    "eve": {
        "species_column": constants.DEFAULT_SPECIES_COLUMN,
        "id_column": constants.DEFAULT_COMPOSITE_ID_COLUMN,
        "log_base": constants.DEFAULT_LOG_BASE,
        "pseudocount": constants.DEFAULT_PSEUDOCOUNT,
        "rscript": constants.DEFAULT_RSCRIPT,
        "timeout": constants.DEFAULT_EVE_TIMEOUT,
        "poll_interval": constants.DEFAULT_POLL_INTERVAL,
    },
    "results": {
        "pvalue_threshold": constants.DEFAULT_PVALUE_THRESHOLD,
        "lrt_df": constants.DEFAULT_LRT_DF,
    },
    "figures": {
        "enabled": True,
        "pca": True,
        "dendrogram": True,
    },
}

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, list):
            config[key] = [
                (config_dir / v).resolve()
                if isinstance(v, str) and (v.startswith("./") or v.startswith("../"))
                else v
                for v in value
            ]
        elif isinstance(value, dict):
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def merge_with_defaults(config: Dict, defaults: Optional[Dict] = None) -> Dict:
    """Recursively fill missing keys of `config` from `defaults`."""
    merged = copy.deepcopy(DEFAULTS if defaults is None else defaults)
    for key, value in (config or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_with_defaults(value, merged[key])
        else:
            merged[key] = value
    return merged


def validate_config(config: Dict) -> None:
    """Reject unknown policy names and out-of-range thresholds up front."""
    problems = []
    if config["taxonomy"]["fallback"] not in constants.TAXONOMY_FALLBACKS:
        problems.append(
            f"taxonomy.fallback must be one of {constants.TAXONOMY_FALLBACKS}"
        )
    if not 0 <= float(config["taxonomy"]["species_confidence"]) <= 1:
        problems.append("taxonomy.species_confidence must be within [0, 1]")
    if config["merge"]["unmatched_policy"] not in constants.UNMATCHED_POLICIES:
        problems.append(
            f"merge.unmatched_policy must be one of {constants.UNMATCHED_POLICIES}"
        )
    if config["dedup"]["policy"] not in constants.DEDUP_POLICIES:
        problems.append(f"dedup.policy must be one of {constants.DEDUP_POLICIES}")
    if float(config["depth"]["min_depth"]) < 0:
        problems.append("depth.min_depth must be non-negative")
    if not 0 < float(config["results"]["pvalue_threshold"]) <= 1:
        problems.append("results.pvalue_threshold must be within (0, 1]")
    if float(config["eve"]["pseudocount"]) < 0:
        problems.append("eve.pseudocount must be non-negative")
    if problems:
        raise SchemaError("Invalid configuration", problems)


def get_config(
    config_path: Union[str, Path, None] = constants.DEFAULT_CONFIG_PATH
) -> Dict:
    if config_path is None:
        config = merge_with_defaults({})
        validate_config(config)
        return config

    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    config_dir = Path(config_path).resolve().parent
    config = resolve_relative_paths(config, config_dir)
    config = merge_with_defaults(config)
    validate_config(config)
    logger.debug(f"Loaded configuration from '{config_path}'")
    return config
