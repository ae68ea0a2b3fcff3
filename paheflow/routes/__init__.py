from .extractor import extractor_router

__all__ = ["extractor_router"]
