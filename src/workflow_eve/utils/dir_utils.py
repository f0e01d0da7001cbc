# ===================================== IMPORTS ====================================== #

import logging
from pathlib import Path
from typing import Union

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ==================================== FUNCTIONS ===================================== #

class SubDirs:
    def __init__(self, dir_path: Union[str, Path]):
        self.main = Path(dir_path)
        self.logs = self.main / 'logs'
        self.final = self.main / 'final'
        self.tables = self.final / 'tables'
        self.reports = self.final / 'reports'
        self.figures = self.final / 'figures'
        self.eve = self.main / 'eve'
        self.eve_jobs = self.eve / 'jobs'
        self.eve_results = self.eve / 'results'
        self.create_dirs()

    def create_dirs(self):
        dirs = [
            self.main,
            self.logs,
            self.final,
            self.tables,
            self.reports,
            self.figures,
            self.eve,
            self.eve_jobs,
            self.eve_results,
        ]
        for _dir in dirs:
            _dir.mkdir(parents=True, exist_ok=True)

    def job_dir(self, job_id: str) -> Path:
        job_dir = self.eve_jobs / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        return job_dir
