import re

from relevance.cache import Cache
from relevance.nltk_init import stemmer, stop_words

_SPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]+")
_URL_PREFIXES = ("http://", "https://")

# message text -> tuple of normalized words
cache = Cache(max_items=5000)


def _strip_word(word: str) -> str:
    return _NON_ALNUM_RE.sub("", word.lower())


def _is_removed_token(token: str) -> bool:
    lowered = token.lower()
    if lowered.startswith(_URL_PREFIXES):
        return True
    # Mentions and custom emoji look like <@!837476904742289429> or <#837826557477126219>
    return len(token) > 1 and token.startswith("<") and token.endswith(">")


def _candidate_words(text: str) -> list[str]:
    text = _SPACE_RE.sub(" ", text or "").strip()
    if not text:
        return []
    kept = [token for token in text.split(" ") if not _is_removed_token(token)]
    joined = " ".join(kept).replace("-", " ").replace("/", " ")
    return joined.split()


def normalize_word(word: str) -> str:
    """Lowercase, strip, stem and stop-word filter a single word. Returns "" when dropped."""
    cleaned = _strip_word(word)
    if not cleaned or cleaned in stop_words:
        return ""
    stemmed = stemmer.stem(cleaned)
    if not stemmed or stemmed in stop_words:
        return ""
    return stemmed


def normalize(text: str) -> list[str]:
    """Normalized words of text in order of appearance, duplicates kept."""
    key = text or ""
    res = cache.get(key)
    if res is not None:
        return list(res)
    words = [stemmed for stemmed in map(normalize_word, _candidate_words(key)) if stemmed]
    cache.set(key, tuple(words))
    return words


def restems_for_content(text: str) -> dict[str, dict[str, int]]:
    """
    Map every normalized word of text to the surface forms it came from.

    Surface forms are lowercased with punctuation removed, so "Diamonds!" and
    "diamonds" count together.
    """
    result: dict[str, dict[str, int]] = {}
    for word in _candidate_words(text):
        stemmed = normalize_word(word)
        if not stemmed:
            continue
        surface = _strip_word(word)
        forms = result.setdefault(stemmed, {})
        forms[surface] = forms.get(surface, 0) + 1
    return result
