import os
import nltk
from nltk.corpus import stopwords
from nltk.data import find
from nltk.stem.snowball import SnowballStemmer
from typing import Optional


def _ensure_resource(resource_name: str, download_name: Optional[str] = None) -> None:
    """Make sure the required NLTK resource is present before actual work starts."""
    try:
        find(resource_name)
    except LookupError:
        nltk.download(download_name or resource_name.split('/')[-1], quiet=True)


NLTK_LANGUAGE = os.getenv('NLTK_LANGUAGE', 'english')

_ensure_resource('corpora/stopwords', 'stopwords')

# Porter2 is the English snowball stemmer; "procrastination" -> "procrastin".
stemmer = SnowballStemmer(NLTK_LANGUAGE)

try:
    stop_words = frozenset(stopwords.words(NLTK_LANGUAGE))
except LookupError:
    nltk.download('stopwords', quiet=True)
    stop_words = frozenset(stopwords.words("english"))
