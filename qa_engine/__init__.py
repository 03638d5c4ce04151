"""
QA Resolution Engine - Source Package

A hybrid question-answering engine for a personal finance help centre.
Questions are answered from a curated FAQ corpus whenever possible and
escalated to a paid generative model only when the corpus has nothing
good enough to say.

DESIGN PRINCIPLES:
1. Local answers first, paid answers last
2. The cost budget is a hard ceiling, not a suggestion
3. Every failure still produces a usable answer
4. Every step is auditable
5. Storage and model backends are swappable
"""

__version__ = "1.0.0"
__author__ = "QA Resolution Engine Team"
