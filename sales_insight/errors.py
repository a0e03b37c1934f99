"""
Error taxonomy for the analysis pipeline.

Rationale:
- Every failure aborts the whole request, so a single base class carries the
  HTTP status and the diagnostics (failing stage, transcript so far).
- The message of each error is what the end user sees; raw model output is
  only ever logged.
"""

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for all errors surfaced by the pipeline."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.stage: Optional[str] = None
        self.transcript: List[Dict[str, Any]] = []

    def attach(self, stage: str, transcript: List[Dict[str, Any]]) -> "PipelineError":
        """Record where in the stage sequence the error happened."""
        self.stage = stage
        self.transcript = list(transcript)
        return self


class InputError(PipelineError):
    """No file, empty file, no readable sheet or no data rows."""

    status_code = 400


class ParseError(PipelineError):
    """Spreadsheet bytes could not be decoded."""

    status_code = 400


class ModelInvocationError(PipelineError):
    """Missing credential, transport failure or blocked/empty model response."""

    status_code = 502


class ExtractionFailure(PipelineError):
    """Model text contained no recognizable JSON object boundary."""

    status_code = 502


class MalformedJSON(ExtractionFailure):
    """A JSON candidate was found but did not parse."""

    def __init__(self, message: str, snippet: str = ""):
        super().__init__(message)
        self.snippet = snippet


class StageContractViolation(PipelineError):
    """A stage returned JSON that does not satisfy the context contract."""

    status_code = 502

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []
