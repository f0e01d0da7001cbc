#!/usr/bin/env python3
"""
Tests for the external beta-shared job runner. A small Python script stands in
for the R driver so no R installation is needed.
"""

import io
import json
import sys
import tempfile
import threading
import time
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent / 'src'
sys.path.insert(0, str(src_path))

import pandas as pd
import pytest
from skbio import TreeNode

from workflow_eve.errors import DelegateError, JobCancelled, PreconditionError
from workflow_eve.eve.delegate import (
    BetaSharedResult, RscriptBetaSharedTest, read_beta_shared_outputs,
    run_beta_shared_test
)
from workflow_eve.eve.inputs import EVEInputs, build_eve_inputs

FAKE_DRIVER = '''
import sys
from pathlib import Path
import pandas as pd

job_dir = Path(sys.argv[1])
matrix = pd.read_csv(job_dir / "matrix.csv", index_col=0)
pd.DataFrame({"shared_beta": [2.0]}).to_csv(job_dir / "shared_beta.csv", index=False)
pd.DataFrame({
    "taxon": matrix.index,
    "theta": 0.0,
    "sigma2": 1.0,
    "alpha": 0.5,
    "beta": [1.0 + i for i in range(len(matrix))],
    "LRT": [4.0 - i for i in range(len(matrix))],
}).to_csv(job_dir / "beta_shared_results.csv", index=False)
print("done")
'''

SLOW_DRIVER = '''
import time
time.sleep(60)
'''

FAILING_DRIVER = '''
import sys
print("evemodel not installed", file=sys.stderr)
sys.exit(3)
'''


def create_inputs() -> EVEInputs:
    tree = TreeNode.read(io.StringIO("((mouse:1,rat:1):1,vole:2);"), format='newick')
    table = pd.DataFrame({
        'composite_id': ['S1', 'S2', 'S3'],
        'Species': ['mouse', 'rat', 'vole'],
        'f1': [1, 2, 3],
        'f2': [4, 5, 6],
    })
    return build_eve_inputs(table, ['f1', 'f2'], tree)


def create_runner(tmp: str, driver: str, **kwargs) -> RscriptBetaSharedTest:
    script = Path(tmp) / 'driver.py'
    script.write_text(driver)
    return RscriptBetaSharedTest(
        job_dir=Path(tmp) / 'job',
        rscript=sys.executable,
        script_path=script,
        poll_interval=0.1,
        terminate_grace=2.0,
        **kwargs
    )


def test_successful_job():
    with tempfile.TemporaryDirectory() as tmp:
        runner = create_runner(tmp, FAKE_DRIVER)
        result = runner(create_inputs())

        assert isinstance(result, BetaSharedResult)
        assert result.shared_beta == 2.0
        assert list(result.lrt.index) == ['f1', 'f2']
        assert result.beta.tolist() == [1.0, 2.0]
        assert runner.status()['state'] == 'finished'
        assert 'done' in (Path(tmp) / 'job' / 'job.log').read_text()


def test_failed_job():
    with tempfile.TemporaryDirectory() as tmp:
        runner = create_runner(tmp, FAILING_DRIVER)
        with pytest.raises(DelegateError):
            runner(create_inputs())
        status = json.loads((Path(tmp) / 'job' / 'status.json').read_text())
        assert status['state'] == 'failed'
        assert status['returncode'] == 3


def test_timeout_cancels_job():
    with tempfile.TemporaryDirectory() as tmp:
        runner = create_runner(tmp, SLOW_DRIVER, timeout=0.5)
        started = time.monotonic()
        with pytest.raises(JobCancelled):
            runner(create_inputs())
        assert time.monotonic() - started < 30
        assert runner.status()['state'] == 'cancelled'
        assert runner.process.poll() is not None


def test_cancel_from_another_thread():
    with tempfile.TemporaryDirectory() as tmp:
        runner = create_runner(tmp, SLOW_DRIVER)
        timer = threading.Timer(0.5, runner.cancel)
        timer.start()
        try:
            with pytest.raises(JobCancelled):
                runner(create_inputs())
        finally:
            timer.cancel()
        assert runner.status()['state'] == 'cancelled'


def test_missing_rscript():
    with tempfile.TemporaryDirectory() as tmp:
        runner = RscriptBetaSharedTest(
            job_dir=Path(tmp) / 'job', rscript=str(Path(tmp) / 'no-such-binary')
        )
        with pytest.raises(DelegateError):
            runner(create_inputs())


def test_outputs_must_cover_submitted_taxa():
    with tempfile.TemporaryDirectory() as tmp:
        job_dir = Path(tmp)
        pd.DataFrame({'shared_beta': [1.5]}).to_csv(job_dir / 'shared_beta.csv', index=False)
        pd.DataFrame({'taxon': ['f1'], 'beta': [1.0], 'LRT': [0.2]}).to_csv(
            job_dir / 'beta_shared_results.csv', index=False
        )
        assert read_beta_shared_outputs(job_dir, ['f1']).shared_beta == 1.5
        with pytest.raises(DelegateError):
            read_beta_shared_outputs(job_dir, ['f1', 'f2'])

    with tempfile.TemporaryDirectory() as tmp:
        with pytest.raises(DelegateError):
            read_beta_shared_outputs(tmp)


def test_run_validates_before_calling_delegate():
    inputs = create_inputs()
    calls = []

    def delegate(eve_inputs):
        calls.append(eve_inputs)
        return BetaSharedResult(
            shared_beta=1.0,
            lrt=pd.Series([0.1, 0.2], index=['f1', 'f2']),
            params=pd.DataFrame({'beta': [1.0, 2.0]}, index=['f1', 'f2']),
        )

    assert run_beta_shared_test(inputs, delegate).shared_beta == 1.0
    assert len(calls) == 1

    broken = EVEInputs(
        tree=inputs.tree, matrix=inputs.matrix, species=inputs.species.iloc[:2]
    )
    with pytest.raises(PreconditionError):
        run_beta_shared_test(broken, delegate)
    assert len(calls) == 1


def test_delegate_must_return_every_taxon():
    def partial(eve_inputs):
        return BetaSharedResult(
            shared_beta=1.0,
            lrt=pd.Series([0.1], index=['f1']),
            params=pd.DataFrame({'beta': [1.0]}, index=['f1']),
        )

    with pytest.raises(DelegateError):
        run_beta_shared_test(create_inputs(), partial)
