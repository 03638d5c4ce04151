"""Answer caching."""

from qa_engine.cache.result_cache import ResultCache

__all__ = ["ResultCache"]
