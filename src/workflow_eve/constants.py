import re
from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_N: int = 65
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the "X of Y complete" text (e.g., "42 of 65")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"
# Color of the time elapsed display (e.g., "E: 00:01:25")
DEFAULT_TIME_ELAPSED_STYLE: str = "light_sky_blue1"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_PROJECT_DIR = Path("eve_project")

# ==================================================================================== #
# COLUMNS
# ==================================================================================== #
DEFAULT_SAMPLE_ID_COLUMN = 'SampleID'
DEFAULT_FEATURE_ID_COLUMN = 'Feature ID'
DEFAULT_LABEL_COLUMN = 'label'
DEFAULT_GENOTYPE_COLUMN = 'Genotype'
DEFAULT_SPECIES_COLUMN = 'Species'
DEFAULT_COMPOSITE_ID_COLUMN = 'composite_id'
DEFAULT_DEPTH_COLUMN = 'total_reads'

# Header variants written by QIIME2 / phyloseq exports
TAXONOMY_COLUMN_RENAMES = {
    'Feature ID': 'id',
    'FeatureID': 'id',
    'feature-id': 'id',
    'Taxon': 'taxonomy',
    'Taxonomy': 'taxonomy',
    'Consensus': 'confidence',
    'Confidence': 'confidence',
}

# ==================================================================================== #
# TAXONOMY
# ==================================================================================== #
DEFAULT_SPECIES_CONFIDENCE: float = 0.97
DEFAULT_TAXONOMY_FALLBACK: str = 'unclassified'
TAXONOMY_FALLBACKS = ('unclassified', 'deepest')
UNCLASSIFIED_LABEL: str = 'unclassified'

RANK_PREFIXES = ['d', 'p', 'c', 'o', 'f', 'g', 's']
RANK_NAMES = {
    'd': 'Domain', 'p': 'Phylum', 'c': 'Class',
    'o': 'Order', 'f': 'Family', 'g': 'Genus', 's': 'Species'
}
RANK_PREFIX_PATTERN = re.compile(r"^\s*[a-z]__")

# ==================================================================================== #
# MERGE / FILTER / DEDUPLICATION
# ==================================================================================== #
DEFAULT_UNMATCHED_POLICY: str = 'keep'
UNMATCHED_POLICIES = ('keep', 'drop', 'drop_left_only', 'drop_right_only')

# Sequencing depth cut-off from upstream rarefaction QC
DEFAULT_MIN_DEPTH: int = 5141
DEFAULT_HISTOGRAM_BINS: int = 50

DEFAULT_DEDUP_POLICY: str = 'first'
DEDUP_POLICIES = ('first', 'last', 'merge')
DEFAULT_MERGE_SEPARATOR: str = '|'
DEFAULT_COMPOSITE_SEPARATOR: str = '_'

# ==================================================================================== #
# EVE
# ==================================================================================== #
DEFAULT_LOG_BASE: float = 2
DEFAULT_PSEUDOCOUNT: float = 1.0
DEFAULT_RSCRIPT = 'Rscript'
DEFAULT_POLL_INTERVAL: float = 5.0
DEFAULT_EVE_TIMEOUT = None
DEFAULT_LRT_DF: int = 1

# ==================================================================================== #
# RESULTS
# ==================================================================================== #
DEFAULT_PVALUE_THRESHOLD: float = 0.1
TYPE_LINEAGE_SPECIFIC: str = 'lineage-specific'
TYPE_HIGHLY_VARIABLE: str = 'highly variable'
CATEGORY_NOT_SIGNIFICANT: str = 'not significant'

CATEGORY_COLORS = {
    TYPE_LINEAGE_SPECIFIC: '#1f77b4',
    TYPE_HIGHLY_VARIABLE: '#d62728',
    CATEGORY_NOT_SIGNIFICANT: '#7f7f7f',
}

# ==================================================================================== #
# FIGURES
# ==================================================================================== #
DEFAULT_HEIGHT = 1100
DEFAULT_WIDTH = 1600
DEFAULT_N_PCA = 2
DEFAULT_LINKAGE_METHOD = 'average'
DEFAULT_LINKAGE_METRIC = 'euclidean'
