from typing import Dict, Type

from paheflow.extractors.animepahe import AnimePaheExtractor
from paheflow.extractors.base import BaseExtractor, ExtractorError


class ExtractorFactory:
    """Factory for creating URL extractors."""

    _extractors: Dict[str, Type[BaseExtractor]] = {
        "AnimePahe": AnimePaheExtractor,
    }

    @classmethod
    def get_extractor(cls, host: str, request_headers: dict, **kwargs) -> BaseExtractor:
        """Get appropriate extractor instance for the given host."""
        extractor_class = cls._extractors.get(host)
        if not extractor_class:
            raise ExtractorError(f"Unsupported host: {host}")
        return extractor_class(request_headers, **kwargs)
