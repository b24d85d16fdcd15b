"""
Risk scoring for individual LLM calls.

Additive point model over prompt/response size, sensitive keywords, token
count, errors and the model used, clamped to 0-100. Pure and deterministic:
used on the ingestion path and for offline analysis alike.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from ai_incident_guard.config.loader import ScoringConfig
from .errors import ValidationError

MIN_SCORE = 0
MAX_SCORE = 100

SENSITIVE_KEYWORDS = (
    # Security/hacking related
    'exploit', 'vulnerability', 'malware', 'ransomware', 'backdoor', 'injection',
    'sql injection', 'xss', 'csrf', 'ddos', 'brute force', 'password crack',
    'hack', 'breach', 'unauthorized access', 'privilege escalation',
    # Harmful content
    'bomb', 'weapon', 'kill', 'murder', 'suicide', 'self-harm', 'abuse',
    'violence', 'illegal', 'drug', 'cocaine', 'heroin', 'methamphetamine',
    # Fraud/scam
    'phishing', 'scam', 'fraud', 'money laundering', 'counterfeit',
    'credit card fraud', 'identity theft', 'ponzi', 'pyramid scheme',
    # Privacy violations
    'doxxing', 'stalking', 'harassment', 'blackmail', 'extortion',
    'private information', 'personal data', 'ssn', 'social security',
    # Discriminatory content
    'racist', 'sexist', 'hate speech', 'discrimination', 'bigotry',
)

# Word boundaries keep "exploitation" from matching "exploit"
_KEYWORD_PATTERNS = {
    keyword: re.compile(r'\b' + re.escape(keyword) + r'\b', re.IGNORECASE)
    for keyword in SENSITIVE_KEYWORDS
}

MODEL_RISK_ADJUSTMENTS: Dict[str, int] = {
    'gpt-4': 0,
    'gpt-4-turbo': 0,
    'gpt-3.5-turbo': 2,
    'o3-mini': -2,
    'claude-3': -1,
    'llama-2': 3,
}


@dataclass(frozen=True)
class RiskScoreInput:
    """Everything the scorer looks at for one call."""
    prompt: str
    response: str
    model: str
    tokens: Optional[int] = None
    has_error: bool = False


@dataclass(frozen=True)
class RiskScoreBreakdown:
    """Per-factor contributions and the clamped final score."""
    prompt_length_score: int
    response_length_score: int
    keyword_score: int
    token_score: int
    error_score: int
    model_adjustment: int
    final_score: int
    matched_keywords: FrozenSet[str] = frozenset()

    @property
    def raw_score(self) -> int:
        """Sum of all factors before clamping."""
        return (
            self.prompt_length_score
            + self.response_length_score
            + self.keyword_score
            + self.token_score
            + self.error_score
            + self.model_adjustment
        )


def find_sensitive_keywords(text: str) -> FrozenSet[str]:
    """Return the distinct sensitive keywords present in ``text``."""
    return frozenset(
        keyword for keyword, pattern in _KEYWORD_PATTERNS.items()
        if pattern.search(text)
    )


def get_model_adjustment(model: str) -> int:
    """Look up the signed risk delta for a model.

    Exact case-insensitive match first, then the longest known model name
    contained in ``model`` (so "gpt-4-turbo-2024-04-09" resolves to
    "gpt-4-turbo", not "gpt-4"). Unknown models get 0.
    """
    normalized = model.strip().lower()
    if normalized in MODEL_RISK_ADJUSTMENTS:
        return MODEL_RISK_ADJUSTMENTS[normalized]

    candidates = [key for key in MODEL_RISK_ADJUSTMENTS if key in normalized]
    if not candidates:
        return 0
    return MODEL_RISK_ADJUSTMENTS[max(candidates, key=len)]


def calculate_risk_score(
    score_input: RiskScoreInput,
    config: ScoringConfig = ScoringConfig(),
) -> RiskScoreBreakdown:
    """Calculate the risk score of one LLM call.

    Scoring breakdown (defaults):
    - Prompt length > 5000 chars: +10
    - Response length > 10000 chars: +10
    - Distinct sensitive keywords: +20 each, capped at +40
    - Token count > 4000: +15
    - Error in response: +25
    - Model-specific adjustment: small signed delta
    - Final score: clamped to 0-100

    Args:
        score_input: Prompt, response, model and optional tokens/error flag
        config: Scoring thresholds and weights

    Returns:
        RiskScoreBreakdown with every factor and the final score

    Raises:
        ValidationError: If the input is malformed
    """
    _validate_input(score_input)

    prompt_length_score = 0
    if len(score_input.prompt) > config.prompt_length_threshold:
        prompt_length_score = config.prompt_length_points

    response_length_score = 0
    if len(score_input.response) > config.response_length_threshold:
        response_length_score = config.response_length_points

    matched = find_sensitive_keywords(score_input.prompt + "\n" + score_input.response)
    keyword_score = min(len(matched) * config.keyword_points, config.keyword_cap)

    token_score = 0
    if score_input.tokens is not None and score_input.tokens > config.token_threshold:
        token_score = config.token_points

    error_score = config.error_points if score_input.has_error else 0

    model_adjustment = get_model_adjustment(score_input.model)

    raw = (
        prompt_length_score + response_length_score + keyword_score
        + token_score + error_score + model_adjustment
    )

    return RiskScoreBreakdown(
        prompt_length_score=prompt_length_score,
        response_length_score=response_length_score,
        keyword_score=keyword_score,
        token_score=token_score,
        error_score=error_score,
        model_adjustment=model_adjustment,
        final_score=max(MIN_SCORE, min(MAX_SCORE, raw)),
        matched_keywords=matched,
    )


def get_risk_score(score_input: RiskScoreInput, config: ScoringConfig = ScoringConfig()) -> int:
    """Return just the final 0-100 score."""
    return calculate_risk_score(score_input, config).final_score


def _validate_input(score_input: RiskScoreInput) -> None:
    if not isinstance(score_input.prompt, str):
        raise ValidationError("prompt must be a string", {"field": "prompt"})
    if not isinstance(score_input.response, str):
        raise ValidationError("response must be a string", {"field": "response"})
    if not isinstance(score_input.model, str):
        raise ValidationError("model must be a string", {"field": "model"})
    if score_input.tokens is not None:
        if isinstance(score_input.tokens, bool) or not isinstance(score_input.tokens, int):
            raise ValidationError("tokens must be an integer", {"field": "tokens"})
        if score_input.tokens < 0:
            raise ValidationError("tokens cannot be negative", {"field": "tokens"})
