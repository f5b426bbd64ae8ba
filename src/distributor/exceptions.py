from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class DistributorError(Exception):
    """Base exception for errors in the distributor package."""


@dataclass(frozen=True)
class ConfigurationError(DistributorError):
    """Raised when the bundle configuration cannot be loaded or validated."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class OutputPreparationError(DistributorError):
    """Raised when the output file cannot be created or stat'ed."""

    path: Path
    message: str = "Could not prepare the output file."

    def __str__(self) -> str:
        return f"{self.message} ({self.path})"


@dataclass(frozen=True)
class TranspileError(DistributorError):
    """Raised when a source file fails to transpile."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass(frozen=True)
class TranspilerUnavailableError(DistributorError):
    """Raised when transpilation is requested but no compiler can be found."""

    message: str = "No TypeScript compiler found."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class JobStateError(DistributorError):
    """Raised when a job is asked to make an illegal lifecycle transition."""

    message: str

    def __str__(self) -> str:
        return self.message
