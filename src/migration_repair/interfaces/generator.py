"""Abstract interface for tier-2 fix generators."""

from typing import Protocol

from ..models.patch import Patch


class FixGenerator(Protocol):
    """Contract for external services that propose patches for an error.

    Implementations call a generative text service (Anthropic, a local model,
    a test double) and turn its response into patches. The pipeline treats
    any exception or an empty list as "no fix produced" for that cluster.
    """

    async def generate_fix_for_error(
        self,
        error_message: str,
        code_context: str,
        supporting_docs: str,
    ) -> list[Patch]:
        """
        Propose patches fixing a single compiler error.

        Args:
            error_message: The representative diagnostic's message
            code_context: Source lines surrounding the error location
            supporting_docs: Migration notes or changelog excerpts, may be empty

        Returns:
            Candidate patches, best first. May be empty.

        Raises:
            GeneratorError: If the service call fails
            RateLimitError: If the service rate limit is exceeded
            GeneratorTimeoutError: If the request times out
        """
        ...

    @property
    def model_name(self) -> str:
        """Identifier of the model producing the patches."""
        ...
