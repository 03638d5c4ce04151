"""
Prompt Construction

The generative model answers as the product's Canadian personal-finance
assistant. The closest FAQ entries are included as grounding so that
answers stay consistent with the help centre.
"""

import re
from typing import Optional, Sequence

from qa_engine.models.faq import FAQEntry


SYSTEM_PROMPT = """You are {product}'s assistant for Canadian personal finance questions.

GUIDELINES:
- Answer for Canada only: CAD amounts, Canadian banks and credit unions, Canadian regulation
- Canadian products where relevant: TFSA, RRSP, RESP, FHSA, GIC, HISA
- Credit bureaus are Equifax and TransUnion Canada
- Keep the answer under 200 words and easy to follow
- Never ask for or repeat account numbers, passwords or other personal identifiers

FORMAT:
- Start with a direct answer
- Give 2-3 practical points
- End with a next step

DO NOT GIVE:
- Recommendations on individual stocks or securities
- Tax advice beyond general guidance
- Legal, medical or insurance advice"""

_MAX_GROUNDING_ENTRIES = 3
_MAX_GROUNDING_CHARS = 400

_CANADIAN_TERMS = ("canada", "canadian", "cad", "tfsa", "rrsp", "rbc", "td", "scotiabank", "bmo", "cibc")
_STRUCTURE_MARKERS = re.compile(r"(^|\n)\s*(-|•|\d+\.)\s")


def build_prompt(
    query: str,
    context: Optional[str] = None,
    related_entries: Sequence[FAQEntry] = (),
    product: str = "ClariFi",
) -> str:
    """Full prompt text for one escalated question."""
    parts = [SYSTEM_PROMPT.format(product=product)]

    grounding = [
        f"Q: {entry.question}\nA: {entry.answer[:_MAX_GROUNDING_CHARS]}"
        for entry in list(related_entries)[:_MAX_GROUNDING_ENTRIES]
    ]
    if grounding:
        parts.append("Related help centre answers (may be partially relevant):\n\n" + "\n\n".join(grounding))

    parts.append(f"Canadian financial question: {query.strip()}")
    if context:
        parts.append(f"Additional context: {context.strip()}")

    return "\n\n".join(parts)


def estimate_confidence(text: str) -> float:
    """
    Heuristic confidence of a generated answer, in [0.3, 0.95].

    Longer, structured answers that mention Canadian context score higher.
    """
    confidence = 0.7
    if len(text) > 100:
        confidence += 0.1
    if len(text) > 150:
        confidence += 0.1

    words = set(re.findall(r"[a-z]+", text.lower()))
    found = sum(1 for term in _CANADIAN_TERMS if term in words)
    confidence += min(0.1, found * 0.02)

    if _STRUCTURE_MARKERS.search(text):
        confidence += 0.05
    if len(text) < 50:
        confidence -= 0.2

    return min(0.95, max(0.3, confidence))
