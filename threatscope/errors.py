"""Error taxonomy for the threat modeling pipeline."""


class ThreatScopeError(Exception):
    """Base class for all pipeline errors."""
    pass


class CollectionError(ThreatScopeError):
    """Raised when the source cannot be cloned, found or loaded. Fatal to the run."""
    pass


class ScanError(ThreatScopeError):
    """Raised when a single file cannot be read. Callers skip the file."""
    pass


class ModelError(ThreatScopeError):
    """Raised when the model call fails after all retries."""
    pass


class RecoveryError(ThreatScopeError):
    """Raised when a model response cannot be parsed or repaired."""
    pass


class ThreatValidationError(ThreatScopeError):
    """Raised when a single threat element is malformed. Callers drop the element."""
    pass
