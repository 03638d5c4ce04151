"""FAQ corpus loading and search."""

from qa_engine.faq.corpus import CorpusLoadError, load_corpus, parse_corpus, sorted_categories
from qa_engine.faq.index import FAQIndex

__all__ = [
    "CorpusLoadError",
    "FAQIndex",
    "load_corpus",
    "parse_corpus",
    "sorted_categories",
]
