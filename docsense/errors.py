# =============================================================================
# Exception Hierarchy
# =============================================================================
#
#   DocsenseError  (base — catch-all for any docsense error)
#   ├── CapabilityNotFound    — unknown capability name (Gateway)
#   ├── WorkerFailure         — worker exited nonzero / unusable output
#   ├── GatewayUnavailable    — the Gateway itself cannot be reached
#   ├── ProviderUnavailable   — LLM / embedding / vector index unreachable
#   ├── NotReady              — document not indexed yet (retryable)
#   ├── MalformedModelOutput  — structured output expected, not received
#   └── DocumentNotFound      — no such document for this owner
#
# Which of these escape to a caller depends on the path:
# - fast path and direct retrieval surface them synchronously
# - background paths log and swallow them
# - the Tool Orchestrator turns WorkerFailure / MalformedModelOutput into
#   per-capability data instead of raising
# =============================================================================


class DocsenseError(Exception):
    """Base exception for all docsense errors.

    Carries a human-readable ``message`` and an optional ``provider_name``
    identifying the external service or capability involved. ``__str__``
    prefixes the provider name in brackets, e.g. ``[timeline] exit code 1``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class CapabilityNotFound(DocsenseError):
    """Raised when a capability name is absent from the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(
            message=f"Capability '{name}' is not registered",
            provider_name=name,
        )
        self.name = name


class WorkerFailure(DocsenseError):
    """Raised when a capability worker exits nonzero or returns garbage."""

    def __init__(
        self,
        message: str = "Capability worker failed",
        provider_name: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.exit_code = exit_code


class GatewayUnavailable(DocsenseError):
    """Raised when the Tool Gateway cannot be reached at all."""

    def __init__(
        self,
        message: str = "Tool gateway is unreachable",
        provider_name: str | None = "gateway",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailable(DocsenseError):
    """Raised when an embedding, vector index or completion call fails."""

    def __init__(
        self,
        message: str = "External provider is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotReady(DocsenseError):
    """Raised when retrieval or chat runs before indexing has completed.

    A retryable condition, not a failure of the document.
    """

    def __init__(self, document_id: str) -> None:
        super().__init__(
            message=(
                f"Document {document_id} is still being indexed. "
                "Please try again shortly."
            ),
        )
        self.document_id = document_id


class MalformedModelOutput(DocsenseError):
    """Raised when a model response is not the JSON object we asked for."""

    def __init__(
        self,
        message: str = "Model output is not a JSON object",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DocumentNotFound(DocsenseError):
    """Raised when a document does not exist or belongs to another owner."""

    def __init__(self, document_id: str) -> None:
        super().__init__(message=f"Document {document_id} not found")
        self.document_id = document_id
