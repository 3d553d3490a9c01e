"""Exception types raised by the discovery pipeline."""

from pathlib import Path


class GfSourcesError(Exception):
    """Base class for all gfsources errors."""


class SourceUnavailable(GfSourcesError):
    """The catalog repository could not be cloned, updated, or read."""


class MalformedRecord(GfSourcesError):
    """One metadata record could not be decoded."""

    def __init__(self, metadata_fp: str | Path | None, reason: str):
        self.metadata_fp = Path(metadata_fp) if metadata_fp is not None else None
        self.reason = reason
        location = str(self.metadata_fp) if self.metadata_fp is not None else "<string>"
        super().__init__(f"malformed metadata record {location}: {reason}")


class OutputWriteFailure(GfSourcesError):
    """The report could not be serialized or written."""

    def __init__(self, output_fp: str | Path | None, reason: str):
        self.output_fp = Path(output_fp) if output_fp is not None else None
        self.reason = reason
        target = str(self.output_fp) if self.output_fp is not None else "<stdout>"
        super().__init__(f"failed to write report to {target}: {reason}")


class RunCancelled(GfSourcesError):
    """The run was cancelled before every probe finished."""


class GitError(GfSourcesError):
    """A git command exited with a non-zero status or could not be started."""

    def __init__(self, args: list[str], returncode: int | None, stderr: str):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(self.args_list)} failed ({returncode}): {self.stderr}")


class GitTimeout(GitError):
    """A git command did not finish within its timeout."""

    def __init__(self, args: list[str], timeout: float):
        self.timeout = timeout
        super().__init__(args, None, f"timed out after {timeout:g}s")
