"""
Text Analysis Module

Word counting, tokenization and lightweight lexical classification
for prose in mixed scripts.

No real part-of-speech tagging - uses suffix rules and fixed vocabularies.
Logographic runs (CJK) can be handed to a pluggable word segmenter.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Protocol, Set
import logging
import re

logger = logging.getLogger(__name__)


# Scripts written without whitespace between words
LOGOGRAPHIC_PATTERN = re.compile(
    r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]"
)
LOGOGRAPHIC_RUN_PATTERN = re.compile(
    r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]+"
)
SENTENCE_SPLIT_PATTERN = re.compile(r"[.!?。！？]+")
PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n\s*\n")

# Stripped from token edges before lexicon lookup
TOKEN_EDGE_PUNCTUATION = "\"'`.,;:!?()[]{}<>-_*~—–“”‘’。，！？、"

# Weight of one logographic character relative to one spaced word
LOGOGRAPHIC_WORD_WEIGHT = 0.5


class WordCategory(Enum):
    """Categories a lexicon can assign to a token."""
    ADJECTIVE = "adjective"
    VERB = "verb"
    ABSTRACT_NOUN = "abstract_noun"


ADJECTIVE_SUFFIXES = (
    "ful", "less", "ous", "ive", "al", "ic", "able", "ible", "ish", "ly", "ary", "ory",
)

COMMON_ADJECTIVES: FrozenSet[str] = frozenset({
    "good", "bad", "big", "small", "large", "little", "old", "young", "new",
    "long", "short", "high", "low", "great", "beautiful", "dark", "light",
    "hot", "cold", "warm", "cool", "fast", "slow", "hard", "soft", "loud",
    "quiet", "happy", "sad", "angry", "afraid", "brave", "calm", "clear",
    "deep", "dry", "wet", "empty", "full", "heavy", "thick", "thin", "wide",
    "narrow", "rough", "smooth", "sharp", "sweet", "sour", "bitter", "fresh",
    "strange", "familiar", "certain", "possible", "real", "true", "false",
})

VERB_SUFFIXES = ("ing", "ed")

COMMON_VERBS: FrozenSet[str] = frozenset({
    "be", "is", "am", "are", "was", "were", "been", "being",
    "have", "has", "had", "having", "do", "does", "did", "doing",
    "say", "said", "go", "went", "gone", "get", "got", "make", "made",
    "know", "knew", "think", "thought", "take", "took", "see", "saw",
    "come", "came", "want", "wanted", "look", "looked", "use", "used",
    "find", "found", "give", "gave", "tell", "told", "work", "worked",
    "call", "called", "try", "tried", "ask", "asked", "need", "needed",
    "feel", "felt", "become", "became", "leave", "left", "put", "mean",
    "keep", "kept", "let", "begin", "began", "seem", "seemed", "help",
    "show", "showed", "hear", "heard", "play", "played", "run", "ran",
    "move", "moved", "live", "lived", "believe", "believed", "hold", "held",
    "bring", "brought", "happen", "happened", "write", "wrote", "written",
    "sit", "sat", "stand", "stood", "lose", "lost", "pay", "paid",
    "meet", "met", "include", "included", "continue", "continued",
    "set", "learn", "learned", "change", "changed", "lead", "led",
    "understand", "understood", "watch", "watched", "follow", "followed",
    "stop", "stopped", "create", "created", "speak", "spoke", "spoken",
    "read", "allow", "allowed", "add", "added", "spend", "spent",
    "grow", "grew", "grown", "open", "opened", "walk", "walked",
    "win", "won", "offer", "offered", "remember", "remembered",
    "consider", "considered", "appear", "appeared", "buy", "bought",
    "wait", "waited", "serve", "served", "die", "died", "send", "sent",
    "expect", "expected", "build", "built", "stay", "stayed", "fall", "fell",
})

ABSTRACT_NOUNS: FrozenSet[str] = frozenset({
    "love", "hate", "fear", "anxiety", "hope", "despair", "joy", "sorrow",
    "anger", "peace", "war", "truth", "lie", "beauty", "ugliness", "justice",
    "injustice", "freedom", "slavery", "power", "weakness", "strength",
    "knowledge", "ignorance", "wisdom", "folly", "courage", "cowardice",
    "faith", "doubt", "belief", "disbelief", "trust", "distrust", "honor",
    "shame", "pride", "humility", "guilt", "innocence", "grief", "loss",
    "happiness", "sadness", "loneliness", "friendship", "enmity", "loyalty",
    "betrayal", "identity", "self", "soul", "spirit", "mind", "heart",
    "memory", "dream", "reality", "fantasy", "imagination", "thought",
    "feeling", "emotion", "sensation", "perception", "consciousness",
    "meaning", "purpose", "reason", "logic", "intuition", "instinct",
    "desire", "need", "want", "wish", "ambition", "aspiration", "goal",
    "success", "failure", "achievement", "disappointment", "satisfaction",
    "frustration", "contentment", "discontent", "pleasure", "pain",
    "suffering", "bliss", "agony", "ecstasy", "melancholy", "nostalgia",
    "regret", "remorse", "forgiveness", "resentment", "gratitude", "envy",
    "jealousy", "compassion", "empathy", "sympathy", "apathy", "indifference",
    "relationship", "connection", "bond", "attachment", "separation",
})


class Lexicon(Protocol):
    """Word -> category lookup. Any tagger can stand behind this."""

    def classify(self, word: str) -> Set[WordCategory]:
        ...


# A segmenter splits a logographic run into words
Segmenter = Callable[[str], List[str]]


class SuffixLexicon:
    """
    Heuristic lexicon: fixed vocabularies plus suffix rules.

    Deliberately crude - a word ending in "ly" counts as an adjective,
    anything ending in "ing"/"ed" counts as a verb.
    """

    def __init__(
        self,
        adjectives: FrozenSet[str] = COMMON_ADJECTIVES,
        adjective_suffixes: tuple = ADJECTIVE_SUFFIXES,
        verbs: FrozenSet[str] = COMMON_VERBS,
        verb_suffixes: tuple = VERB_SUFFIXES,
        abstract_nouns: FrozenSet[str] = ABSTRACT_NOUNS,
    ):
        self.adjectives = adjectives
        self.adjective_suffixes = adjective_suffixes
        self.verbs = verbs
        self.verb_suffixes = verb_suffixes
        self.abstract_nouns = abstract_nouns

    def classify(self, word: str) -> Set[WordCategory]:
        categories: Set[WordCategory] = set()
        if not word:
            return categories

        if word in self.adjectives or word.endswith(self.adjective_suffixes):
            categories.add(WordCategory.ADJECTIVE)
        if word in self.verbs or word.endswith(self.verb_suffixes):
            categories.add(WordCategory.VERB)
        if word in self.abstract_nouns:
            categories.add(WordCategory.ABSTRACT_NOUN)

        return categories


class JiebaSegmenter:
    """Segments Chinese runs with jieba (optional `cjk` extra)."""

    def __init__(self):
        import jieba

        self._jieba = jieba

    def __call__(self, text: str) -> List[str]:
        return [w for w in self._jieba.lcut(text) if w.strip()]


@dataclass
class TextStatistics:
    """Lexical statistics over a full document."""
    token_count: int = 0
    adjective_ratio: float = 0.0
    verb_ratio: float = 0.0
    abstract_noun_ratio: float = 0.0
    average_sentence_length: float = 0.0
    current_paragraph_length: float = 0.0
    paragraph_count: int = 0


def count_words(text: str) -> float:
    """
    Count words in mixed-script text.

    Whitespace-delimited tokens count 1 each; every logographic character
    counts 0.5. The two are added together.
    """
    if not text or not text.strip():
        return 0.0

    logographic_chars = len(LOGOGRAPHIC_PATTERN.findall(text))
    spaced_only = LOGOGRAPHIC_PATTERN.sub(" ", text)
    spaced_words = len(spaced_only.split())

    return spaced_words + logographic_chars * LOGOGRAPHIC_WORD_WEIGHT


def normalize_token(token: str) -> str:
    return token.strip(TOKEN_EDGE_PUNCTUATION).lower()


def tokenize(text: str, segmenter: Optional[Segmenter] = None) -> List[str]:
    """
    Split document text into tokens.

    Logographic runs go through the segmenter when one is supplied;
    any segmenter failure falls back to a plain whitespace split.
    """
    if not text:
        return []

    if segmenter is None or not LOGOGRAPHIC_PATTERN.search(text):
        return text.split()

    try:
        tokens: List[str] = []
        position = 0
        for match in LOGOGRAPHIC_RUN_PATTERN.finditer(text):
            tokens.extend(text[position:match.start()].split())
            tokens.extend(segmenter(match.group(0)))
            position = match.end()
        tokens.extend(text[position:].split())
        return tokens
    except Exception as e:
        logger.debug(f"Segmentation failed, using whitespace split: {e}")
        return text.split()


def split_paragraphs(text: str) -> List[str]:
    return PARAGRAPH_SPLIT_PATTERN.split(text) if text else []


def count_paragraphs(text: str) -> int:
    """Non-blank paragraphs separated by at least one blank line."""
    return sum(1 for p in split_paragraphs(text) if p.strip())


def analyze_text(
    text: str,
    lexicon: Optional[Lexicon] = None,
    segmenter: Optional[Segmenter] = None,
) -> TextStatistics:
    """Compute lexical ratios and sentence/paragraph shape of a document."""
    lexicon = lexicon or SuffixLexicon()
    tokens = tokenize(text, segmenter)
    stats = TextStatistics(paragraph_count=count_paragraphs(text))

    if not tokens:
        return stats

    adjectives = verbs = abstract = 0
    for token in tokens:
        categories = lexicon.classify(normalize_token(token))
        if WordCategory.ADJECTIVE in categories:
            adjectives += 1
        if WordCategory.VERB in categories:
            verbs += 1
        if WordCategory.ABSTRACT_NOUN in categories:
            abstract += 1

    total = len(tokens)
    stats.token_count = total
    stats.adjective_ratio = adjectives / total
    stats.verb_ratio = verbs / total
    stats.abstract_noun_ratio = abstract / total

    sentences = [s for s in SENTENCE_SPLIT_PATTERN.split(text) if s.strip()]
    if sentences:
        stats.average_sentence_length = sum(count_words(s) for s in sentences) / len(sentences)

    paragraphs = split_paragraphs(text)
    stats.current_paragraph_length = count_words(paragraphs[-1]) if paragraphs else 0.0

    return stats


def last_words(text: str, limit: int = 500) -> str:
    """The trailing `limit` whitespace-delimited words of text."""
    words = text.split()
    return " ".join(words[-limit:])
