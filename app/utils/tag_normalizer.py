"""
Canonical forms for tag keys and values.

Keys are lowercased, trimmed, whitespace-collapsed, and the last word is
singularized ("Pokemon Cards" -> "pokemon card", "sports cars" -> "sports car").
Values are only lowercased and trimmed. Both functions are pure and idempotent.
"""
import re
from functools import lru_cache

import inflection

# Nouns that are plural in form but name a single thing
PLURAL_EXCEPTIONS = frozenset({
    'jeans',
    'scissors',
    'glasses',
    'pants',
    'shorts',
    'binoculars',
    'pliers',
    'clothes',
})

# Checked before inflection's Rails rules, first match wins. Each entry covers
# a noun family those rules get wrong ("gas" -> "ga", "waves" -> "wafe").
SINGULAR_OVERRIDES = [
    (re.compile(r"(gas|atlas|canvas|bias|lens|campus|cactus|bonus|circus|census|chorus|focus|walrus)(es)?$"), r"\1"),
    (re.compile(r"(curve|valve|nerve|serve|carve)s$"), r"\1"),
    (re.compile(r"^(wi|kni|li)ves$"), r"\1fe"),
    (re.compile(r"(ea|oa|ie|hoo|[lr])ves$"), r"\1f"),
    (re.compile(r"ves$"), "ve"),
    (re.compile(r"^(toe|tiptoe|canoe|oboe|floe|hoe|foe|shoe)s$"), r"\1"),
    (re.compile(r"^(pie|tie|die|lie)s$"), r"\1"),
    (re.compile(r"(cookie|calorie|smoothie|brownie|selfie|hoodie|goalie|rookie|birdie|necktie|beanie|prairie)s$"), r"\1"),
]


@lru_cache(maxsize=4096)
def _singularize(word: str) -> str:
    if not word or word in PLURAL_EXCEPTIONS:
        return word
    for pattern, replacement in SINGULAR_OVERRIDES:
        if pattern.search(word):
            return pattern.sub(replacement, word)
    return inflection.singularize(word)


def normalize_key(raw: str) -> str:
    words = raw.strip().lower().split()
    if not words:
        return ""
    words[-1] = _singularize(words[-1])
    return " ".join(words)


def normalize_value(raw: str) -> str:
    return raw.strip().lower()
