"""
Domain Vocabulary

Canadian personal-finance terminology used by the fuzzy matcher and the
relevance scorer. Kept as plain module constants so that curating the
vocabulary never requires touching matching logic.
"""

# Canonical term -> synonyms and variations. Lookups are bidirectional.
FINANCIAL_SYNONYMS: dict[str, tuple[str, ...]] = {
    "credit score": ("credit rating", "credit report", "creditworthiness", "fico score", "beacon score"),
    "credit utilization": ("credit usage", "credit ratio", "balance ratio", "utilization rate"),
    "emergency fund": ("emergency savings", "rainy day fund", "emergency money", "safety net"),
    "tfsa": ("tax free savings account", "tax-free savings", "tfsa account"),
    "rrsp": ("retirement savings plan", "registered retirement", "rrsp account"),
    "budget": ("budgeting", "financial plan", "spending plan", "money management"),
    "bank account": ("banking account", "chequing account", "savings account"),
    "interac": ("e-transfer", "etransfer", "electronic transfer", "money transfer"),
    "mortgage": ("home loan", "house loan", "property loan"),
    "interest rate": ("interest", "apr", "annual percentage rate"),
    "debt": ("loan", "credit card debt", "owing money"),
    "payment": ("pay", "paying", "bill payment", "monthly payment"),
    "clarifi": ("app", "application", "platform"),
    "statement": ("bank statement", "credit card statement", "financial statement"),
    "transaction": ("purchase", "charge"),
    "income": ("salary", "wage", "earnings", "money coming in"),
    "expense": ("spending", "expenditure", "money going out"),
    "savings": ("save", "saving money", "putting aside money"),
    "investment": ("investing", "invest", "portfolio", "stocks", "bonds"),
    "insurance": ("coverage", "policy"),
    "fees": ("charges", "service fees", "banking fees"),
    "limit": ("maximum", "ceiling", "restriction"),
    "minimum": ("lowest", "least amount"),
    "improve": ("increase", "boost", "enhance", "raise"),
    "reduce": ("lower", "decrease", "minimize"),
    "check": ("view", "look at", "monitor", "track"),
    "avoid": ("prevent", "eliminate"),
    "choose": ("select", "pick", "decide on", "opt for"),
    "best": ("recommended", "optimal", "ideal"),
    "canada": ("canadian", "in canada", "cad"),
    "free": ("no cost", "no fee", "complimentary", "without charge"),
}

# Interrogative openers, matched after apostrophes are stripped
# ("what's" -> "whats"). Longer patterns first.
QUESTION_PATTERNS: tuple[str, ...] = (
    "whats the difference between",
    "what is the difference between",
    "what happens if",
    "best way to",
    "how do i",
    "how can i",
    "how much",
    "how to",
    "what is",
    "what are",
    "whats",
    "why should",
    "when should",
    "where can",
    "which is",
    "should i",
    "can i",
    "is it",
)

STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at",
    "to", "for", "of", "with", "by", "my", "is", "are", "do",
    "does", "what", "how", "can", "you", "your", "me", "about",
})

# Words shorter than this are dropped during query normalization.
MIN_WORD_LENGTH = 3

CANADIAN_INDICATORS: tuple[str, ...] = (
    "canada", "canadian", "cad", "tfsa", "rrsp", "resp", "cpp", "ei",
    "gst", "hst", "cra", "equifax", "transunion", "rbc", "td",
    "scotiabank", "bmo", "cibc", "tangerine", "simplii", "desjardins",
    "vancity", "interac",
)
DOMAIN_BOOST_PER_INDICATOR = 0.1
DOMAIN_BOOST_CAP = 0.3

PRODUCT_FEATURES: tuple[str, ...] = (
    "upload", "statement", "ai", "categorization", "privacy", "security",
    "notification", "alert", "dashboard", "insight", "analysis", "automatic",
)
PRODUCT_BOOST_PER_FEATURE = 0.15
PRODUCT_NAME_BOOST = 0.25
PRODUCT_BOOST_CAP = 0.5
