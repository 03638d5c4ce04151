"""
Canned Fallback Responses

What the user sees when nothing better is available. Every response is
still useful on its own: it says what happened in plain language and
points to FAQ categories that can be browsed without a network.
"""

from typing import Optional

from qa_engine.models.errors import ErrorType, FallbackResponse


NETWORK_ISSUE = "network_issue"
RATE_LIMITED = "rate_limited"
SERVER_ERROR = "server_error"
SEARCH_FAILED = "search_failed"
PARSING_ERROR = "parsing_error"
CACHE_ERROR = "cache_error"
OFFLINE = "offline"
QUOTA_EXCEEDED = "quota_exceeded"
NO_MATCH = "no_match"
UNKNOWN = "unknown"

_BROWSE_SUGGESTIONS = ["Getting Started", "Credit Scores and Credit Cards", "Budgeting"]

FALLBACK_RESPONSES: dict[str, FallbackResponse] = {
    NETWORK_ISSUE: FallbackResponse(
        key=NETWORK_ISSUE,
        text=(
            "I'm having trouble connecting right now. Meanwhile, you can browse "
            "our help topics below, which work without a connection."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    RATE_LIMITED: FallbackResponse(
        key=RATE_LIMITED,
        text=(
            "Lots of people are asking questions right now, so I can't write a "
            "personalised answer this minute. Please try again shortly, or browse "
            "the help topics below."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    SERVER_ERROR: FallbackResponse(
        key=SERVER_ERROR,
        text=(
            "Our answer service is having a problem on its side. Your question "
            "wasn't lost; try again in a few minutes or browse the help topics below."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    SEARCH_FAILED: FallbackResponse(
        key=SEARCH_FAILED,
        text=(
            "I couldn't search the help centre for that question. Try rephrasing "
            "it with fewer words, or pick a topic below."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    PARSING_ERROR: FallbackResponse(
        key=PARSING_ERROR,
        text=(
            "I got an answer I couldn't read properly. Please ask again, or "
            "browse the help topics below."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    CACHE_ERROR: FallbackResponse(
        key=CACHE_ERROR,
        text="Something went wrong loading saved answers. Please ask again.",
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    OFFLINE: FallbackResponse(
        key=OFFLINE,
        text=(
            "You're offline. I've saved your question and will answer it when "
            "you're back online. Help topics below are available offline."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    QUOTA_EXCEEDED: FallbackResponse(
        key=QUOTA_EXCEEDED,
        text=(
            "You've used all of your personalised answers for this period. "
            "The help centre topics below may still cover your question, and "
            "your allowance resets at the start of the next period."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    NO_MATCH: FallbackResponse(
        key=NO_MATCH,
        text=(
            "I couldn't find an answer to that in the help centre. Try different "
            "words, or browse the topics below."
        ),
        suggestions=_BROWSE_SUGGESTIONS,
    ),
    UNKNOWN: FallbackResponse(
        key=UNKNOWN,
        text="Something unexpected happened. Please try again, or browse the help topics below.",
        suggestions=_BROWSE_SUGGESTIONS,
    ),
}

# Short user-facing descriptions stored on each QAError
USER_MESSAGES: dict[ErrorType, str] = {
    ErrorType.NETWORK: "Connection problem. Check your internet and try again.",
    ErrorType.API: "The answer service is busy. Please try again shortly.",
    ErrorType.CACHE: "Saved answers could not be loaded.",
    ErrorType.SEARCH: "The help centre search failed.",
    ErrorType.PARSING: "The answer could not be read.",
    ErrorType.SYSTEM: "Something unexpected happened.",
}


def get_fallback(key: str, suggestions: Optional[list[str]] = None) -> FallbackResponse:
    """
    Canned response for key; unknown keys get the generic response.

    suggestions, when given, replaces the default browse topics.
    """
    response = FALLBACK_RESPONSES.get(key, FALLBACK_RESPONSES[UNKNOWN])
    if suggestions:
        return response.model_copy(update={"suggestions": list(suggestions)})
    return response.model_copy(deep=True)
