"""Unit tests for custom exceptions module."""

import pytest

from supersmart.core.exceptions import (
    CalibrationConflictError,
    CalibrationError,
    ConfigurationError,
    EmptyInputFileError,
    InferenceFailure,
    InputFileError,
    MalformedInputError,
    MissingInputFileError,
    SupersmartError,
    TaxonNotFoundError,
    UnknownEngineError,
)


class TestSupersmartError:
    """Tests for base exception class."""

    def test_basic_message(self):
        """Should create exception with just message."""
        error = SupersmartError("Test error")
        assert error.message == "Test error"
        assert error.suggestion is None
        assert str(error) == "Test error"

    def test_message_with_suggestion(self):
        """Should include suggestion in full message."""
        error = SupersmartError("Test error", suggestion="Try this fix")
        assert error.suggestion == "Try this fix"
        assert "Suggestion: Try this fix" in str(error)


class TestInputFileErrors:
    """Tests for missing, empty and malformed inputs."""

    def test_missing_file(self):
        error = MissingInputFileError("/tmp/merged.txt", "alignment list")
        assert "Required alignment list not found" in str(error)
        assert error.path.name == "merged.txt"
        assert isinstance(error, InputFileError)

    def test_empty_file(self):
        error = EmptyInputFileError("species.tsv", "taxa table")
        assert "is empty" in error.message
        assert "--verbose" in error.suggestion

    def test_malformed_file(self):
        error = MalformedInputError("tree.dnd", "unbalanced parentheses")
        assert "Could not parse tree.dnd: unbalanced parentheses" == error.message


class TestStageErrors:
    """Tests for taxonomy, inference and calibration errors."""

    def test_unknown_engine_lists_known_tags(self):
        error = UnknownEngineError("mrbayes", ["raxml", "examl"])
        assert "mrbayes" in error.message
        assert "examl, raxml" in error.suggestion
        assert isinstance(error, ConfigurationError)

    def test_taxon_not_found(self):
        error = TaxonNotFoundError("Homo sapiens")
        assert error.taxon == "Homo sapiens"
        assert "could not be resolved" in str(error)

    def test_inference_failure_with_exit_code(self):
        error = InferenceFailure("raxml", 2, "no tree written")
        assert error.message == "raxml inference failed (exit code 2): no tree written"
        assert error.return_code == 2

    def test_inference_failure_without_exit_code(self):
        error = InferenceFailure("exabayes", None)
        assert "no exit status" in error.message

    def test_calibration_conflict(self):
        error = CalibrationConflictError("3", "7")
        assert isinstance(error, CalibrationError)
        assert error.ancestor == "3"
        assert error.descendant == "7"

    def test_errors_are_catchable_as_base(self):
        with pytest.raises(SupersmartError):
            raise TaxonNotFoundError("x")
