"""
Error taxonomy for the discovery and matching pipeline.

Third-party client exceptions are translated into these at the client
adapter boundary so orchestration code only handles one family.
"""


class GrantscoutError(Exception):
    """Base class for all pipeline errors."""


class UpstreamUnavailable(GrantscoutError):
    """Search, extraction, embedding or image service could not be reached or returned an error."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} unavailable: {message}")


class ExtractionFailed(GrantscoutError):
    """The asynchronous extraction job reported a failed status."""

    def __init__(self, job_id: str, detail: str = None):
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Extraction job {job_id} failed: {detail or 'no detail from upstream'}")


class ExtractionTimeout(GrantscoutError):
    """The extraction job did not finish within the poll attempt ceiling."""

    def __init__(self, job_id: str, attempts: int, interval: float):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(
            f"Extraction job {job_id} timed out after {attempts} polls "
            f"({attempts * interval:.0f}s)"
        )


class ExtractionCancelled(ExtractionTimeout):
    """The enclosing discovery job hit its timeout while polling."""

    def __init__(self, job_id: str, attempts: int, interval: float):
        super().__init__(job_id, attempts, interval)
        self.args = (f"Extraction job {job_id} cancelled by discovery job timeout after {attempts} polls",)


class EmbeddingFailure(GrantscoutError):
    """The embedding service returned nothing usable."""


class EmptyEmbeddingText(EmbeddingFailure, ValueError):
    """Embedding input was empty or whitespace only."""


class VectorDimensionMismatch(GrantscoutError, ValueError):
    """Two vectors of different lengths were compared."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must have the same length ({left} != {right})")


class InvalidJobTransition(GrantscoutError):
    """A discovery job was moved out of a terminal state."""


class NotFound(GrantscoutError, LookupError):
    """A referenced entity does not exist."""


class NoSearchResults(GrantscoutError):
    """The search phase returned no candidate URLs."""

    def __init__(self, query: str):
        self.query = query
        super().__init__(f"Search returned no URLs for query '{query[:80]}'")
