"""
Execution environment paths for a run.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExecutionEnvironment:
    """Directory layout a run and its tools work in.

    Paths are computed up front; nothing touches the filesystem until
    ``ensure()`` is called.
    """

    root_dir: Path
    session_dir: Path
    files_dir: Path
    output_dir: Path
    history_dir: Path
    traces_dir: Path

    @classmethod
    def for_run(cls, base_dir: str | os.PathLike, run_id: str) -> "ExecutionEnvironment":
        root = Path(base_dir).expanduser().resolve() / f"agent-{run_id}"
        return cls(
            root_dir=root,
            session_dir=root / "session",
            files_dir=root / "files",
            output_dir=root / "output",
            history_dir=root / "history",
            traces_dir=root / "traces",
        )

    def ensure(self) -> "ExecutionEnvironment":
        """Create every directory of the layout."""
        for path in (
            self.root_dir,
            self.session_dir,
            self.files_dir,
            self.output_dir,
            self.history_dir,
            self.traces_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)
        logger.debug("Execution environment ready", root=str(self.root_dir))
        return self

    def env_vars(self) -> dict[str, str]:
        return {
            "AGENT_ROOT_DIR": str(self.root_dir),
            "AGENT_SESSION_DIR": str(self.session_dir),
            "AGENT_FILES_DIR": str(self.files_dir),
            "AGENT_OUTPUT_DIR": str(self.output_dir),
            "AGENT_HISTORY_DIR": str(self.history_dir),
            "AGENT_TRACES_DIR": str(self.traces_dir),
        }
