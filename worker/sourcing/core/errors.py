"""Error taxonomy for the sourcing pipeline.

A throttled lookup is not an error (the throttle simply answers ``False``) and
source-precedence conflicts are resolved by the store, so neither has a class here.
"""


class SourcingError(RuntimeError):
    """Base class for pipeline errors."""


class RetriableTransportError(SourcingError):
    """Network failure, timeout or 5xx answer that may succeed on a later attempt."""


class FatalSourcingError(SourcingError):
    """Non-retriable API error, malformed payload or exhausted retries."""


class RegistryMissError(SourcingError):
    """The company registry has no active establishment for a siret."""

    def __init__(self, siret: str):
        super().__init__(f"siret {siret} not found in registry")
        self.siret = siret


class PipelineAbort(SourcingError):
    """Too many clusters failed during a run; the failure is likely systemic."""
