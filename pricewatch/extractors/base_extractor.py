# pricewatch/extractors/base_extractor.py

"""Contract every price extractor fulfils for the refresh pipeline."""

from abc import ABC, abstractmethod

from pricewatch.models.extraction import ExtractionResult


class ExtractionError(Exception):
    """Raised when a page could not be fetched or yielded no price."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(reason)
        self.url = url
        self.reason = reason


class BaseExtractor(ABC):
    """Given a URL, return its current raw price or raise."""

    @abstractmethod
    def extract(self, url: str) -> ExtractionResult:
        """Fetch *url* and read its price.

        Raises:
            ExtractionError: On network, blocking or parse failure.
        """
        ...
