"""
callshield/nlp/text_features.py
================================
Text Feature Extractor — CallShield

Responsibility:
    - Score one transcript window for fraud and harassment language
    - Authority claims, urgency, threat lexicon, PII solicitation,
      imperative verbs, harassment / abuse
    - Light linguistic statistics: sentiment polarity, subjectivity,
      question and negation frequency
    - Bigram / trigram danger-phrase scores
    - A single composite text_fraud_score in [0, 1]

All detection is rule-based: compiled, case-insensitive regexes and fixed
word lists. Scores are capped at 1. Empty text yields all-zero features.

This module does NOT:
    - Call any LLM or external API
    - Redact PII (transcripts are analysed, never stored here)
    - Fuse text with audio (see callshield/risk/fusion.py)
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger("callshield.nlp.text_features")


# ---------------------------------------------------------------------------
# Pattern libraries
# ---------------------------------------------------------------------------

_AUTHORITY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(
        r"\b(?:i am|this is|i'm calling from)\s+(?:the\s+)?"
        r"(?:irs|fbi|police|government|department|agency|bank|microsoft|apple|amazon"
        r"|social security|medicare)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:official|authorized|certified|licensed|government|federal)\s+"
        r"(?:agent|officer|representative|department)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\bwe\s+(?:have|need)\s+(?:your|the)\s+(?:information|records|file|case)\b", re.IGNORECASE),
    re.compile(r"\b(?:badge\s+number|case\s+number|reference\s+number|warrant)\b", re.IGNORECASE),
    re.compile(r"\byour\s+(?:account|case|file)\s+(?:has been|is being|will be)\b", re.IGNORECASE),
]

_URGENCY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(?:immediately|urgent|right now|today|within\s+\d+\s+(?:hours?|minutes?|days?))\b", re.IGNORECASE),
    re.compile(r"\b(?:limited time|expires?|deadline|last chance|final notice)\b", re.IGNORECASE),
    re.compile(r"\b(?:act now|don't wait|hurry|quickly|as soon as possible|asap)\b", re.IGNORECASE),
    re.compile(r"\b(?:before\s+it's\s+too\s+late|time\s+is\s+running\s+out)\b", re.IGNORECASE),
    re.compile(r"\bonly\s+\d+\s+(?:left|remaining|available)\b", re.IGNORECASE),
]

_THREAT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(?:arrest|jail|prison|lawsuit|legal\s+action|prosecution)", re.IGNORECASE),
    re.compile(r"\b(?:suspend|terminate|cancel|freeze|block)\s+(?:your\s+)?(?:account|service|benefits)\b", re.IGNORECASE),
    re.compile(r"\b(?:warrant|subpoena|court\s+order|criminal\s+charges)\b", re.IGNORECASE),
    re.compile(r"\b(?:penalty|fine|fee|charge)\s+of\s+\$?\d+", re.IGNORECASE),
    re.compile(r"\b(?:if\s+you\s+don't|unless\s+you|failure\s+to)\b", re.IGNORECASE),
    re.compile(r"\b(?:consequences|serious|severe|immediate\s+action)\b", re.IGNORECASE),
]

_PII_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "ssn": [
        re.compile(r"\b(?:social\s+security(?:\s+number)?|ssn)\b", re.IGNORECASE),
        re.compile(r"\b(?:last\s+four|last\s+4)\s+(?:digits|numbers)\b", re.IGNORECASE),
    ],
    "financial": [
        re.compile(r"\b(?:bank\s+account|routing\s+number|credit\s+card|debit\s+card)\b", re.IGNORECASE),
        re.compile(r"\b(?:account\s+number|pin|cvv|security\s+code)\b", re.IGNORECASE),
    ],
    "identity": [
        re.compile(r"\b(?:date\s+of\s+birth|dob|birthday|mother's\s+maiden)\b", re.IGNORECASE),
        re.compile(r"\b(?:driver'?s?\s+license|passport|id\s+number)\b", re.IGNORECASE),
    ],
    "access": [
        re.compile(r"\b(?:passwords?|login|username|email\s+address)\b", re.IGNORECASE),
        re.compile(r"\b(?:verification\s+code|one-time\s+password|otp)\b", re.IGNORECASE),
    ],
}

# Insults need a closing word boundary ("fat" must not hit "father");
# profanity and slur stems accept suffixes.
_HARASSMENT_PATTERNS: list[re.Pattern[str]] = [
    # insults
    re.compile(
        r"\b(?:idiot|stupid|dumb|loser|pathetic|worthless|ugly|fat|disgusting"
        r"|trash|garbage|moron)\b",
        re.IGNORECASE,
    ),
    # profanity
    re.compile(
        r"\b(?:f+u+c+k+\w*|sh+i+t+\w*|b+i+t+c+h+\w*|a+s+s+h+o+l+e+s?|d+a+m+n+\w*"
        r"|hell|crap|bastard|dick|pussy)\b",
        re.IGNORECASE,
    ),
    # threats of violence
    re.compile(r"\b(?:kill|murder|die|hurt|beat|punch|attack|destroy)\s+(?:you|yourself)\b", re.IGNORECASE),
    re.compile(r"\b(?:i(?:'ll|'m going to| will)|we(?:'ll| will))\s+(?:kill|hurt|beat|destroy|attack)\b", re.IGNORECASE),
    re.compile(r"\b(?:you should|go)\s+(?:die|kill yourself)\b", re.IGNORECASE),
    # degradation
    re.compile(r"\b(?:nobody likes you|everyone hates you|no one cares|you(?:'re| are) nothing)\b", re.IGNORECASE),
    re.compile(r"\b(?:shut (?:the fuck )?up|go away|leave me alone)\b", re.IGNORECASE),
    re.compile(r"\b(?:i hate you|you(?:'re| are) so (?:stupid|ugly|fat|dumb|worthless))\b", re.IGNORECASE),
    # stalking
    re.compile(r"\b(?:i(?:'m| am) watching you|i know where you live|i(?:'ll| will) find you)\b", re.IGNORECASE),
    # sexual harassment
    re.compile(r"\b(?:send (?:me )?nudes|show me your|touch (?:yourself|your))\b", re.IGNORECASE),
    # intimidation
    re.compile(r"\b(?:you(?:'ll| will) (?:regret|pay|be sorry)|watch your back)\b", re.IGNORECASE),
    re.compile(r"\bi(?:'ll| will) make (?:you|your life)\b", re.IGNORECASE),
    # slurs
    re.compile(r"\b(?:n+i+g+g+\w*|ch+i+n+k+\w*|sp+i+c+s?|k+i+k+e+s?|w+e+t+b+a+c+k+s?)\b", re.IGNORECASE),
    # ableist
    re.compile(r"\b(?:retard(?:ed|s)?|cripple|spaz|lame)\b", re.IGNORECASE),
]

_IMPERATIVE_VERBS: frozenset[str] = frozenset({
    "call", "contact", "provide", "give", "send", "transfer", "pay",
    "confirm", "verify", "enter", "click", "go", "press", "download",
    "install", "open", "access", "log", "sign", "buy", "purchase",
})

_POSITIVE_WORDS: frozenset[str] = frozenset({
    "good", "great", "help", "opportunity", "benefit", "reward", "winner", "congratulations",
})
_NEGATIVE_WORDS: frozenset[str] = frozenset({
    "bad", "problem", "issue", "suspend", "cancel", "arrest", "lawsuit", "penalty", "fraud", "illegal",
})
_SUBJECTIVE_MARKERS: frozenset[str] = frozenset({
    "think", "believe", "feel", "opinion", "seem", "appear", "probably", "maybe", "might",
})
_NEGATIONS: tuple[str, ...] = (
    "not", "n't", "no", "never", "none", "nothing", "neither", "nobody", "nowhere",
)

THREAT_BIGRAMS: dict[str, float] = {
    "arrest warrant": 0.9,
    "legal action": 0.8,
    "criminal charges": 0.9,
    "pay immediately": 0.85,
    "account suspended": 0.75,
    "verify identity": 0.6,
    "confirm information": 0.5,
    "gift card": 0.95,
    "wire transfer": 0.85,
    "bitcoin payment": 0.9,
    # harassment
    "kill yourself": 1.0,
    "hate you": 0.7,
    "hurt you": 0.9,
    "nobody likes": 0.6,
    "everyone hates": 0.7,
    "so ugly": 0.6,
    "so stupid": 0.6,
}

_TRIGRAM_PATTERNS: list[tuple[re.Pattern[str], float]] = [
    (re.compile(r"\bsend\s+\w+\s+money\b", re.IGNORECASE), 0.9),
    (re.compile(r"\bbuy\s+gift\s+cards?\b", re.IGNORECASE), 0.95),
    (re.compile(r"\bdon't\s+tell\s+anyone\b", re.IGNORECASE), 0.85),
    (re.compile(r"\bkeep\s+this\s+confidential\b", re.IGNORECASE), 0.8),
    (re.compile(r"\bwire\s+\w+\s+immediately\b", re.IGNORECASE), 0.9),
    (re.compile(r"\bverify\s+your\s+(?:identity|account)\b", re.IGNORECASE), 0.6),
]

_TOKEN_PATTERN: re.Pattern[str] = re.compile(r"[a-z0-9']+")
_SENTENCE_PATTERN: re.Pattern[str] = re.compile(r"[^.!?]+[.!?]*")


# ---------------------------------------------------------------------------
# Composite weights
# ---------------------------------------------------------------------------

TEXT_WEIGHTS: dict[str, float] = {
    "authority": 0.12,
    "urgency": 0.12,
    "threat": 0.15,
    "pii": 0.2,
    "imperative": 0.05,
    "bigram": 0.08,
    "trigram": 0.08,
    "harassment": 0.2,
}

_AUTHORITY_STEP: float = 0.3
_URGENCY_STEP: float = 0.25
_PII_STEP: float = 0.25
_HARASSMENT_STEP: float = 0.3

_MULTI_SIGNAL_BOOST: float = 1.3
_STRONG_SIGNAL_BOOST: float = 1.2
_HARASSMENT_FLOOR_TRIGGER: float = 0.5
_HARASSMENT_FLOOR: float = 0.7


@dataclass
class TextFeatures:
    """Linguistic risk features for one transcript window."""

    authority_score: float = 0.0
    authority_phrases: list[str] = field(default_factory=list)
    urgency_score: float = 0.0
    urgency_indicators: list[str] = field(default_factory=list)
    threat_density: float = 0.0
    threat_terms: list[str] = field(default_factory=list)
    pii_request_score: float = 0.0
    pii_types: list[str] = field(default_factory=list)
    imperative_frequency: float = 0.0
    imperative_verbs: list[str] = field(default_factory=list)
    harassment_score: float = 0.0
    harassment_indicators: list[str] = field(default_factory=list)
    sentiment_polarity: float = 0.0
    subjectivity_score: float = 0.0
    question_frequency: float = 0.0
    negation_frequency: float = 0.0
    bigram_threat_score: float = 0.0
    trigram_pattern_score: float = 0.0
    text_fraud_score: float = 0.0

    def feature_vector(self) -> list[float]:
        return [
            self.authority_score,
            self.urgency_score,
            self.threat_density,
            self.pii_request_score,
            self.imperative_frequency,
            self.sentiment_polarity,
            self.subjectivity_score,
            self.question_frequency,
            self.negation_frequency,
            self.bigram_threat_score,
            self.trigram_pattern_score,
            self.harassment_score,
        ]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class TextFeatureExtractor:
    """Stateless rule-based text scorer."""

    def extract(self, text: str | None) -> TextFeatures:
        if not text or not text.strip():
            return TextFeatures()

        tokens = tokenize(text)

        authority_score, authority_phrases = _score_first_matches(
            _AUTHORITY_PATTERNS, text, _AUTHORITY_STEP,
        )
        urgency_score, urgency_indicators = _score_first_matches(
            _URGENCY_PATTERNS, text, _URGENCY_STEP,
        )
        threat_density, threat_terms = self._threat_features(text, tokens)
        pii_score, pii_types = self._pii_features(text)
        imperative_frequency, imperative_verbs = self._imperative_features(tokens)
        harassment_score, harassment_indicators = self._harassment_features(text)

        bigram_score = self._bigram_score(tokens)
        trigram_score = max(
            (score for pattern, score in _TRIGRAM_PATTERNS if pattern.search(text)),
            default=0.0,
        )

        features = TextFeatures(
            authority_score=authority_score,
            authority_phrases=authority_phrases,
            urgency_score=urgency_score,
            urgency_indicators=urgency_indicators,
            threat_density=threat_density,
            threat_terms=threat_terms,
            pii_request_score=pii_score,
            pii_types=pii_types,
            imperative_frequency=imperative_frequency,
            imperative_verbs=imperative_verbs,
            harassment_score=harassment_score,
            harassment_indicators=harassment_indicators,
            sentiment_polarity=_sentiment(tokens),
            subjectivity_score=min(1.0, sum(t in _SUBJECTIVE_MARKERS for t in tokens) / 10),
            question_frequency=_question_frequency(text),
            negation_frequency=_negation_frequency(tokens),
            bigram_threat_score=bigram_score,
            trigram_pattern_score=trigram_score,
        )
        features.text_fraud_score = composite_fraud_score(features)

        logger.debug(
            "Text features: fraud=%.3f authority=%.2f urgency=%.2f pii=%.2f harassment=%.2f",
            features.text_fraud_score,
            authority_score,
            urgency_score,
            pii_score,
            harassment_score,
        )
        return features

    # -- category extractors ------------------------------------------------

    @staticmethod
    def _threat_features(text: str, tokens: list[str]) -> tuple[float, list[str]]:
        terms = [m.group(0) for m in (p.search(text) for p in _THREAT_PATTERNS) if m]
        if not tokens:
            return 0.0, terms
        return min(1.0, len(terms) * 3 / len(tokens)), terms

    @staticmethod
    def _pii_features(text: str) -> tuple[float, list[str]]:
        score = 0.0
        types: list[str] = []
        for pii_type, patterns in _PII_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(text):
                    score += _PII_STEP
                    if pii_type not in types:
                        types.append(pii_type)
        return min(1.0, score), types

    @staticmethod
    def _imperative_features(tokens: list[str]) -> tuple[float, list[str]]:
        found = [t for t in tokens if t in _IMPERATIVE_VERBS]
        if not tokens:
            return 0.0, []
        return len(found) / len(tokens), list(dict.fromkeys(found))

    @staticmethod
    def _harassment_features(text: str) -> tuple[float, list[str]]:
        """Every occurrence counts towards the score."""
        indicators: list[str] = []
        for pattern in _HARASSMENT_PATTERNS:
            indicators.extend(m.group(0).lower() for m in pattern.finditer(text))

        if indicators:
            logger.info("Harassment language detected (%d matches)", len(indicators))
        return min(1.0, len(indicators) * _HARASSMENT_STEP), list(dict.fromkeys(indicators))

    @staticmethod
    def _bigram_score(tokens: list[str]) -> float:
        return max(
            (THREAT_BIGRAMS.get(f"{a} {b}", 0.0) for a, b in zip(tokens, tokens[1:])),
            default=0.0,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens; punctuation is dropped, apostrophes kept."""
    return _TOKEN_PATTERN.findall(text.lower())


def split_sentences(text: str) -> list[str]:
    """Sentences including their terminal punctuation; blanks dropped."""
    return [s.strip() for s in _SENTENCE_PATTERN.findall(text) if s.strip(" \t\n.!?")]


def _score_first_matches(
    patterns: list[re.Pattern[str]],
    text: str,
    step: float,
) -> tuple[float, list[str]]:
    """One step per matching pattern; evidence is each pattern's first hit."""
    evidence = [m.group(0) for m in (p.search(text) for p in patterns) if m]
    return min(1.0, len(evidence) * step), evidence


def _sentiment(tokens: list[str]) -> float:
    positive = sum(t in _POSITIVE_WORDS for t in tokens)
    negative = sum(t in _NEGATIVE_WORDS for t in tokens)
    if positive + negative == 0:
        return 0.0
    return (positive - negative) / (positive + negative)


def _question_frequency(text: str) -> float:
    sentences = split_sentences(text)
    if not sentences:
        return 0.0
    return sum(s.endswith("?") for s in sentences) / len(sentences)


def _negation_frequency(tokens: list[str]) -> float:
    if not tokens:
        return 0.0
    negated = sum(any(n in t for n in _NEGATIONS) for t in tokens)
    return negated / len(tokens)


def composite_fraud_score(features: TextFeatures) -> float:
    """
    Weighted sum of category scores, boosted when several strong
    signals co-occur, with a floor for clear harassment.
    """
    w = TEXT_WEIGHTS
    score = (
        features.authority_score * w["authority"]
        + features.urgency_score * w["urgency"]
        + features.threat_density * w["threat"]
        + features.pii_request_score * w["pii"]
        + features.imperative_frequency * w["imperative"]
        + features.bigram_threat_score * w["bigram"]
        + features.trigram_pattern_score * w["trigram"]
        + features.harassment_score * w["harassment"]
    )

    high_risk_count = sum([
        features.authority_score > 0.5,
        features.urgency_score > 0.5,
        features.pii_request_score > 0.5,
        features.bigram_threat_score > 0.7,
        features.harassment_score > 0.3,
    ])
    if high_risk_count >= 2:
        score = min(1.0, score * _MULTI_SIGNAL_BOOST)
    if high_risk_count >= 3:
        score = min(1.0, score * _STRONG_SIGNAL_BOOST)

    if features.harassment_score > _HARASSMENT_FLOOR_TRIGGER:
        score = max(score, _HARASSMENT_FLOOR)

    return min(1.0, score)
