"""File based artifact storage, one JSON document per job."""

import os
import tempfile
from pathlib import Path

from .schema import WorkflowArtifact


class ArtifactStore:
    """Stores generated workflow artifacts as JSON files keyed by job id."""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    def _path(self, job_id: str) -> Path:
        return self.base_dir / f"{job_id}.json"

    def save(self, artifact: WorkflowArtifact) -> Path:
        """Write the artifact atomically and return its path."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        filepath = self._path(artifact.job_id)
        fd, tmp = tempfile.mkstemp(dir=self.base_dir, prefix=f".{artifact.job_id}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(artifact.model_dump_json(indent=2, by_alias=True))
            os.replace(tmp, filepath)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return filepath
