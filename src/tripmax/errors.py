# tripmax/errors

"""
tripmax.errors

Central exception hierarchy for TripMax.

Rationale:
  - Pipeline stages & modules should raise specific, meaningful errors.
  - Callers can catch TripmaxError (broad) or specific subclasses (narrow).
  - Anything under ValidationError is the caller's fault and is reported
    before a trip is persisted; everything else is ours.
"""


class TripmaxError(RuntimeError):
    """Base class for all TripMax runtime errors."""


class ConfigError(TripmaxError):
    """Configuration file could not be parsed."""


# ---- Input validation errors -------------------

class ValidationError(TripmaxError):
    """Malformed or insufficient trip data; nothing is saved."""

class InvalidCoordinate(ValidationError):
    """Latitude or longitude outside the valid WGS84 range."""

class InsufficientData(ValidationError):
    """Route has fewer than the two points needed to compute metrics."""

class InvalidDuration(ValidationError):
    """Trip duration is not positive or timestamps cannot be resolved."""

class InvalidPayload(ValidationError):
    """Trip-save request is missing fields or carries badly typed values."""

class DuplicateTripError(ValidationError):
    """A trip with the same id has already been stored."""


# ---- Internal pipeline errors ------------------

class ComputationError(TripmaxError):
    """An internal invariant was violated while computing trip metrics."""

class AccumulationConflict(TripmaxError):
    """Statistics update kept losing optimistic-concurrency races.

    Retryable; the trip itself is already saved.
    """

class RuleEvaluationFailure(TripmaxError):
    """An achievement or challenge evaluation stage failed."""

class RuleDefinitionError(TripmaxError):
    """An achievement or challenge definition is malformed."""


# ---- SQLite / DB errors ------------------------

class DatabaseError(TripmaxError):
    """Errors interacting with the SQLite database."""
