# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import json
import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_eve import constants
from workflow_eve.errors import DelegateError, JobCancelled
from workflow_eve.eve.inputs import EVEInputs, validate_eve_inputs

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ================================= DEFAULT VALUES =================================== #

SHARED_BETA_FILE = "shared_beta.csv"
PER_TAXON_FILE = "beta_shared_results.csv"
STATUS_FILE = "status.json"
LOG_FILE = "job.log"
DRIVER_FILE = "beta_shared_test.R"

# Driver for evemodel::betaSharedTest. Argument 1 is the job directory holding
# tree.nwk, matrix.csv and species.csv.
R_DRIVER = r"""
suppressPackageStartupMessages({
  library(ape)
  library(evemodel)
})
args <- commandArgs(trailingOnly = TRUE)
job_dir <- args[1]

tree <- read.tree(file.path(job_dir, "tree.nwk"))
tree$tip.label <- gsub("'", "", tree$tip.label)
mat <- as.matrix(read.csv(file.path(job_dir, "matrix.csv"),
                          row.names = 1, check.names = FALSE))
species <- read.csv(file.path(job_dir, "species.csv"),
                    stringsAsFactors = FALSE, check.names = FALSE)
stopifnot(identical(as.character(species$sample), colnames(mat)))

res <- betaSharedTest(tree = tree, gene.data = mat, colSpecies = species$species)

write.csv(data.frame(shared_beta = res$sharedBeta),
          file.path(job_dir, "shared_beta.csv"), row.names = FALSE)
per_taxon <- as.data.frame(res$indivBetaRes$par)
per_taxon <- cbind(taxon = rownames(mat), per_taxon,
                   LRT = res$LRT,
                   loglik_individual = res$indivBetaRes$ll,
                   loglik_shared = res$sharedBetaRes$ll)
write.csv(per_taxon, file.path(job_dir, "beta_shared_results.csv"), row.names = FALSE)
"""

# ====================================== TYPES ======================================= #

@dataclass
class BetaSharedResult:
    """
    Output of the beta-shared test.

    Attributes:
        shared_beta: Beta fitted jointly over all taxa.
        lrt:         Likelihood-ratio statistic per taxon.
        params:      Per-taxon fitted parameters (theta, sigma2, alpha, beta, ...)
                     indexed by taxon.
    """
    shared_beta: float
    lrt: pd.Series
    params: pd.DataFrame

    @property
    def beta(self) -> pd.Series:
        return self.params['beta']

    def to_frame(self) -> pd.DataFrame:
        df = self.params.copy()
        df['LRT'] = self.lrt.reindex(df.index)
        df['shared_beta'] = self.shared_beta
        return df.rename_axis('taxon')


# =============================== EXTERNAL R ROUTINE ================================= #

class RscriptBetaSharedTest:
    """
    Runs `evemodel::betaSharedTest` in a separate Rscript process.

    The job directory holds the inputs, the driver script, `job.log` (stdout and
    stderr of the process) and `status.json`, which is rewritten on every poll
    so the job can be monitored from outside. Fits can take days; the job is
    cancelled through `cancel()` (or the shared `cancel_event`) or when `timeout`
    seconds have elapsed.
    """

    def __init__(
        self,
        job_dir: Union[str, Path],
        rscript: str = constants.DEFAULT_RSCRIPT,
        script_path: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = constants.DEFAULT_EVE_TIMEOUT,
        poll_interval: float = constants.DEFAULT_POLL_INTERVAL,
        cancel_event: Optional[threading.Event] = None,
        terminate_grace: float = 10.0
    ):
        self.job_dir = Path(job_dir)
        self.rscript = rscript
        self.script_path = Path(script_path) if script_path else None
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event or threading.Event()
        self.terminate_grace = terminate_grace
        self._status: Dict[str, Any] = {"state": "pending"}

    # Type hints
    process: Optional[subprocess.Popen] = None

    @property
    def status_path(self) -> Path:
        return self.job_dir / STATUS_FILE

    @property
    def log_path(self) -> Path:
        return self.job_dir / LOG_FILE

    def cancel(self) -> None:
        """Request cancellation; the polling loop stops the process."""
        self.cancel_event.set()

    def status(self) -> Dict[str, Any]:
        """Last status written to `status.json`."""
        if self.status_path.exists():
            return json.loads(self.status_path.read_text())
        return dict(self._status)

    def _write_status(self, state: str, **fields) -> None:
        self._status.update(fields)
        self._status["state"] = state
        self._status["updated_at"] = datetime.now().isoformat(timespec="seconds")
        self.status_path.write_text(json.dumps(self._status, indent=2, default=str))

    def _driver(self) -> Path:
        if self.script_path is not None:
            if not self.script_path.exists():
                raise DelegateError(f"Driver script not found: {self.script_path}")
            return self.script_path
        driver = self.job_dir / DRIVER_FILE
        driver.write_text(R_DRIVER.lstrip())
        return driver

    def _stop(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {process.pid} ignored SIGTERM; killing")
            process.kill()
            process.wait()

    def _log_tail(self, n_lines: int = 20) -> str:
        if not self.log_path.exists():
            return ""
        lines = self.log_path.read_text(errors="replace").splitlines()
        return "\n".join(lines[-n_lines:])

    def __call__(self, inputs: EVEInputs) -> BetaSharedResult:
        self.job_dir.mkdir(parents=True, exist_ok=True)
        inputs.write(self.job_dir)
        command = [str(self.rscript), str(self._driver()), str(self.job_dir)]
        logger.info(f"\nExecuting beta-shared test:\n{' '.join(command)}")

        started = time.monotonic()
        self._write_status(
            "running",
            command=command,
            started_at=datetime.now().isoformat(timespec="seconds"),
            n_taxa=inputs.n_taxa,
            n_samples=inputs.n_samples,
        )
        try:
            with open(self.log_path, "w") as log_handle:
                self.process = subprocess.Popen(
                    command,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    text=True,
                    cwd=str(self.job_dir),
                )
        except OSError as e:
            self._write_status("failed", error=str(e))
            raise DelegateError(f"Could not start '{self.rscript}': {e}") from e

        self._write_status("running", pid=self.process.pid)
        while True:
            try:
                returncode = self.process.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                elapsed = time.monotonic() - started
                if self.cancel_event.is_set():
                    self._stop(self.process)
                    self._write_status("cancelled", elapsed_s=round(elapsed, 1))
                    raise JobCancelled(f"Beta-shared job cancelled after {elapsed:.0f}s")
                if self.timeout is not None and elapsed > self.timeout:
                    self._stop(self.process)
                    self._write_status("cancelled", elapsed_s=round(elapsed, 1),
                                       reason="timeout")
                    raise JobCancelled(
                        f"Beta-shared job exceeded timeout of {self.timeout}s"
                    )
                self._write_status("running", elapsed_s=round(elapsed, 1))
                logger.debug(f"Beta-shared job running ({elapsed:.0f}s)")

        elapsed = round(time.monotonic() - started, 1)
        if returncode != 0:
            tail = self._log_tail()
            self._write_status("failed", returncode=returncode, elapsed_s=elapsed)
            logger.error(f"Beta-shared job failed with code {returncode}:\n{tail}")
            raise DelegateError(
                f"Beta-shared job failed with code {returncode} (see {self.log_path})"
            )

        try:
            result = read_beta_shared_outputs(self.job_dir, list(inputs.matrix.index))
        except DelegateError:
            self._write_status("failed", returncode=returncode, elapsed_s=elapsed)
            raise
        self._write_status("finished", returncode=returncode, elapsed_s=elapsed)
        logger.info(f"Beta-shared job finished in {elapsed}s")
        return result


# ==================================== FUNCTIONS ===================================== #

def read_beta_shared_outputs(
    job_dir: Union[str, Path],
    taxa: Optional[List[str]] = None
) -> BetaSharedResult:
    """
    Parse the files written by the driver script.

    Raises:
        DelegateError: If an output is missing, lacks required columns or does not
                       cover exactly the submitted taxa.
    """
    job_dir = Path(job_dir)
    shared_path, per_taxon_path = job_dir / SHARED_BETA_FILE, job_dir / PER_TAXON_FILE
    missing = [p.name for p in (shared_path, per_taxon_path) if not p.exists()]
    if missing:
        raise DelegateError(f"Beta-shared job produced no {missing} in {job_dir}")

    shared = pd.read_csv(shared_path)
    if 'shared_beta' not in shared.columns or shared.empty:
        raise DelegateError(f"'{SHARED_BETA_FILE}' has no shared_beta value")
    shared_beta = float(shared['shared_beta'].iloc[0])

    per_taxon = pd.read_csv(per_taxon_path, dtype={'taxon': str})
    required = ['taxon', 'beta', 'LRT']
    absent = [c for c in required if c not in per_taxon.columns]
    if absent:
        raise DelegateError(f"'{PER_TAXON_FILE}' is missing columns {absent}")
    per_taxon = per_taxon.set_index('taxon')

    if taxa is not None:
        returned = set(per_taxon.index)
        if returned != set(taxa) or len(per_taxon) != len(taxa):
            raise DelegateError(
                f"Beta-shared output covers {len(returned & set(taxa))}/{len(taxa)} "
                f"submitted taxa"
            )
        per_taxon = per_taxon.loc[taxa]

    lrt = per_taxon.pop('LRT').astype(float)
    return BetaSharedResult(shared_beta=shared_beta, lrt=lrt, params=per_taxon)


Delegate = Callable[[EVEInputs], BetaSharedResult]


def run_beta_shared_test(inputs: EVEInputs, delegate: Delegate) -> BetaSharedResult:
    """Validate the inputs, then hand them to the external routine."""
    validate_eve_inputs(inputs)
    result = delegate(inputs)
    missing = set(inputs.matrix.index) - set(result.lrt.index)
    if missing:
        raise DelegateError(f"No likelihood-ratio statistic for {sorted(missing)[:10]}")
    logger.info(
        f"Shared beta = {result.shared_beta:.4g} over {len(result.lrt)} taxa"
    )
    return result
