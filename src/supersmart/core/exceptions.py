"""
Custom exceptions with actionable guidance.

Provides specific error types for the failure scenarios of each pipeline
stage, each with a suggestion for resolution.
"""

from __future__ import annotations

from pathlib import Path


class SupersmartError(Exception):
    """Base exception for supersmart errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(SupersmartError):
    """Raised when configuration is invalid."""


class UnknownEngineError(ConfigurationError):
    """Raised when an inference engine tag is not registered."""

    def __init__(self, tag: str, known: list[str]):
        super().__init__(
            message=f"Unknown inference engine '{tag}'",
            suggestion=f"Choose one of: {', '.join(sorted(known))}",
        )
        self.tag = tag


# =============================================================================
# Input files
# =============================================================================


class InputFileError(SupersmartError):
    """Base class for problems with required stage inputs."""


class MissingInputFileError(InputFileError):
    """Raised when a required input file does not exist."""

    def __init__(self, path: Path | str, what: str = "input file"):
        super().__init__(
            message=f"Required {what} not found: {path}",
            suggestion=(
                "Check the path, or run the preceding pipeline stage that "
                "produces this file."
            ),
        )
        self.path = Path(path)


class EmptyInputFileError(InputFileError):
    """Raised when a required input file exists but holds no data."""

    def __init__(self, path: Path | str, what: str = "input file"):
        super().__init__(
            message=f"Required {what} is empty: {path}",
            suggestion=(
                "The stage that wrote this file probably failed. Re-run it "
                "with --verbose and inspect the log."
            ),
        )
        self.path = Path(path)


class MalformedInputError(InputFileError):
    """Raised when an input file cannot be parsed."""

    def __init__(self, path: Path | str, detail: str):
        super().__init__(
            message=f"Could not parse {path}: {detail}",
            suggestion="Check the file format against the producing stage's output.",
        )
        self.path = Path(path)


# =============================================================================
# Taxonomy
# =============================================================================


class TaxonomyError(SupersmartError):
    """Base class for taxonomy problems."""


class TaxonNotFoundError(TaxonomyError):
    """Raised when a taxon name or identifier cannot be resolved."""

    def __init__(self, taxon: str):
        super().__init__(
            message=f"Taxon '{taxon}' could not be resolved",
            suggestion=(
                "Check the spelling, or make sure the taxon is present in "
                "the taxa table produced by 'smrt taxize'."
            ),
        )
        self.taxon = taxon


# =============================================================================
# Inference
# =============================================================================


class InferenceFailure(SupersmartError):
    """Raised when an inference engine does not produce its tree output."""

    def __init__(self, engine: str, return_code: int | None, detail: str = ""):
        status = "no exit status" if return_code is None else f"exit code {return_code}"
        message = f"{engine} inference failed ({status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message=message,
            suggestion=(
                "Inspect the engine's log files in the working directory "
                "and re-run with --verbose."
            ),
        )
        self.engine = engine
        self.return_code = return_code


# =============================================================================
# Decomposition, calibration and grafting
# =============================================================================


class DecompositionError(SupersmartError):
    """Raised when the backbone cannot be decomposed into clades."""


class CalibrationError(SupersmartError):
    """Raised when a tree cannot be calibrated."""


class CalibrationConflictError(CalibrationError):
    """Raised when nested calibration points contradict each other."""

    def __init__(self, ancestor: str, descendant: str):
        super().__init__(
            message=(
                f"Calibrated node for fossil {ancestor} is an ancestor of the "
                f"calibrated node for fossil {descendant}, although the latter "
                "fossil is older"
            ),
            suggestion="Reconsider the age ranges of these fossils.",
        )
        self.ancestor = ancestor
        self.descendant = descendant


class GraftError(SupersmartError):
    """Raised when a clade tree cannot be grafted onto the backbone."""
