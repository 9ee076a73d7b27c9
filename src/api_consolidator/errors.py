"""Exception hierarchy for the merge engine.

Only fatal conditions are raised. Unresolved references, unresolvable
endpoints and schema type mismatches are logged as warnings instead.
"""


class ConsolidatorError(Exception):
    """Base class for every error raised by api-consolidator."""


class EmptyInputError(ConsolidatorError, ValueError):
    """Aggregation was asked to merge zero documents."""


class DocumentFormatError(ConsolidatorError):
    """A file is not an OpenAPI 3.x or Swagger 2.0 document."""


class InvalidEndpointRefError(ConsolidatorError, ValueError):
    """An endpoint reference string is not ``index:method:path``."""


class RuleFileError(ConsolidatorError):
    """A consolidation/aggregation rule file could not be loaded."""


class ReferenceResolutionError(ConsolidatorError):
    """Base class for fatal ``$ref`` resolution failures."""


class CyclicReferenceError(ReferenceResolutionError):
    """A ``$ref`` chain points back to a reference already being resolved."""

    def __init__(self, chain: list[tuple[str, str]]):
        self.chain = chain
        rendered = " -> ".join(f"{doc}#{fragment}" for doc, fragment in chain)
        super().__init__(f"Cyclic reference: {rendered}")


class ReferenceDepthError(ReferenceResolutionError):
    """Nested references exceeded the configured maximum depth."""

    def __init__(self, max_depth: int, ref: str):
        self.max_depth = max_depth
        self.ref = ref
        super().__init__(f"Reference nesting deeper than {max_depth} while resolving {ref!r}")
