"""
FAQ Corpus Loading

The corpus is a versioned JSON document of categories, each holding its
entries. It is an external content artifact: the engine reads it once at
startup and never writes it.
"""

import json
from pathlib import Path
from typing import Union

import structlog
from pydantic import ValidationError

from qa_engine.models.faq import FAQCategory, FAQCorpus


logger = structlog.get_logger(__name__)


class CorpusLoadError(Exception):
    """The FAQ corpus could not be read or is malformed."""
    pass


def _link_categories(corpus: FAQCorpus) -> FAQCorpus:
    """Stamp each entry with its owning category id."""
    categories = []
    for category in corpus.categories:
        entries = tuple(
            entry if entry.category_id == category.id
            else entry.model_copy(update={"category_id": category.id})
            for entry in category.entries
        )
        categories.append(category.model_copy(update={"entries": entries}))
    return corpus.model_copy(update={"categories": tuple(categories)})


def _check_references(corpus: FAQCorpus) -> None:
    seen: set[str] = set()
    for category in corpus.categories:
        for entry in category.entries:
            if entry.id in seen:
                raise CorpusLoadError(f"Duplicate FAQ id: {entry.id}")
            seen.add(entry.id)

    for category in corpus.categories:
        for entry in category.entries:
            dangling = [ref for ref in entry.related_questions if ref not in seen]
            if dangling:
                logger.warning(
                    "faq_dangling_related_questions",
                    faq_id=entry.id,
                    missing=dangling,
                )


def parse_corpus(data: Union[dict, str]) -> FAQCorpus:
    """
    Validate a corpus document.

    Raises:
        CorpusLoadError: If the document does not match the schema
    """
    try:
        if isinstance(data, str):
            corpus = FAQCorpus.model_validate_json(data)
        else:
            corpus = FAQCorpus.model_validate(data)
    except ValidationError as e:
        raise CorpusLoadError(f"Invalid FAQ corpus: {e}")

    corpus = _link_categories(corpus)
    _check_references(corpus)
    return corpus


def load_corpus(path: Union[str, Path]) -> FAQCorpus:
    """
    Read and validate the corpus file.

    Raises:
        CorpusLoadError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CorpusLoadError(f"Cannot read FAQ corpus at {path}: {e}")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorpusLoadError(f"FAQ corpus at {path} is not valid JSON: {e}")

    corpus = parse_corpus(data)
    logger.info(
        "faq_corpus_loaded",
        path=str(path),
        version=corpus.version,
        categories=len(corpus.categories),
        entries=corpus.entry_count,
    )
    return corpus


def sorted_categories(corpus: FAQCorpus) -> list[FAQCategory]:
    """Categories in display order; ties keep document order."""
    return sorted(corpus.categories, key=lambda category: category.order)
