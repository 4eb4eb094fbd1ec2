"""
Exception types shared by the pipeline, services and routes.
Keep this file import-free (no DB/LLM imports).
"""


class ValidationError(ValueError):
    """Required input missing or invalid; fatal to one computation."""


class LLMError(RuntimeError):
    """Model call failed or returned something that is not the requested JSON."""


class ExtractionPassError(RuntimeError):
    """One extraction pass failed; the pass contributes no facts."""


class NetworkError(RuntimeError):
    """Upstream HTTP source unavailable (weather API)."""


class FactTransitionError(RuntimeError):
    """Verification status change not allowed from the fact's current status."""


class ProgressWriteError(RuntimeError):
    """Progress record could not be persisted; fatal to the owning job."""


class ProgressRegressionError(ProgressWriteError):
    """Write would move percent or stage backwards within one run."""


class RunSupersededError(RuntimeError):
    """A newer run exists for the same document; this run must stop."""


class RunTerminatedError(ProgressWriteError):
    """The run was already failed or completed (e.g. by the worker's stuck-job sweep)."""
