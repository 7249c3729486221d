"""
Library API Backend — Abstract Metadata Resolver Interface
===========================================================

What:  Contract for turning an ISBN into descriptive book data.
How:   Concrete resolvers inherit from MetadataResolver and implement
       fetch_by_isbn() and health_check().
Who:   BookService (ISBN-based creation and lookup), the seed command,
       the health endpoint. Tests substitute a stub implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional

from library_api.schemas.book import BookMetadata


class MetadataResolver(ABC):
    """
    Best-effort ISBN metadata lookup.

    Contract:
        - fetch_by_isbn() never raises: every failure (network, timeout,
          bad response, no match, circuit open) is logged and returns None
        - callers treat None as "use placeholder data", never as an error
        - implementations own their retry and circuit-breaking logic

    Implementations:
        - GoogleBooksService: Google Books volumes API (default)
    """

    @abstractmethod
    async def fetch_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        """
        Resolve `isbn` to book metadata.

        Args:
            isbn: ISBN-10 or ISBN-13, digits only (X allowed as ISBN-10 check digit).

        Returns:
            BookMetadata for the first matching volume, or None.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the upstream service is reachable."""
        ...

    @property
    def is_circuit_open(self) -> bool:
        """Whether lookups are currently being short-circuited."""
        return False

    async def aclose(self) -> None:
        """Release network resources. Called on app shutdown."""
        return None
