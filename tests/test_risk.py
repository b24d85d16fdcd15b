"""
Unit tests for risk scoring.

Tests each scoring factor, clamping and input validation.
"""

import pytest

from ai_incident_guard.config.loader import ScoringConfig
from ai_incident_guard.core.errors import ValidationError
from ai_incident_guard.core.risk import (
    RiskScoreInput,
    calculate_risk_score,
    find_sensitive_keywords,
    get_model_adjustment,
    get_risk_score,
)


class TestRiskFactors:
    """Test individual scoring factors."""

    def test_benign_request_scores_zero(self):
        """A short, clean gpt-4 call has no risk."""
        score = get_risk_score(RiskScoreInput(prompt="Hello", response="Hi there!", model="gpt-4"))
        assert score == 0

    def test_long_prompt_adds_points(self):
        """Prompts over the threshold add prompt length points."""
        result = calculate_risk_score(RiskScoreInput(prompt="a" * 5001, response="ok", model="gpt-4"))
        assert result.prompt_length_score == 10
        assert result.final_score == 10

    def test_prompt_at_threshold_adds_nothing(self):
        """The threshold itself is not exceeded."""
        result = calculate_risk_score(RiskScoreInput(prompt="a" * 5000, response="ok", model="gpt-4"))
        assert result.prompt_length_score == 0

    def test_long_response_adds_points(self):
        """Responses over the threshold add response length points."""
        result = calculate_risk_score(RiskScoreInput(prompt="hi", response="b" * 10001, model="gpt-4"))
        assert result.response_length_score == 10

    def test_one_keyword(self):
        """A single sensitive keyword adds 20."""
        result = calculate_risk_score(
            RiskScoreInput(prompt="How do I write malware?", response="I can't help.", model="gpt-4")
        )
        assert result.matched_keywords == frozenset({"malware"})
        assert result.keyword_score == 20

    def test_keyword_score_is_capped(self):
        """Many distinct keywords never add more than the cap."""
        result = calculate_risk_score(RiskScoreInput(
            prompt="exploit the vulnerability with malware and ransomware",
            response="no",
            model="gpt-4",
        ))
        assert len(result.matched_keywords) == 4
        assert result.keyword_score == 40

    def test_repeated_keyword_counts_once(self):
        """Keywords are counted by distinct match, not occurrence."""
        result = calculate_risk_score(RiskScoreInput(prompt="scam scam scam", response="scam", model="gpt-4"))
        assert result.keyword_score == 20

    def test_keyword_needs_word_boundary(self):
        """Substrings of longer words do not match."""
        assert find_sensitive_keywords("exploitation of hackathons") == frozenset()

    def test_keyword_match_is_case_insensitive(self):
        """Upper case text still matches."""
        assert "phishing" in find_sensitive_keywords("PHISHING email")

    def test_high_token_count_adds_points(self):
        """Token counts over the threshold add 15."""
        result = calculate_risk_score(RiskScoreInput(prompt="hi", response="ok", model="gpt-4", tokens=4001))
        assert result.token_score == 15

    def test_missing_tokens_add_nothing(self):
        """Unknown token counts are not scored."""
        result = calculate_risk_score(RiskScoreInput(prompt="hi", response="ok", model="gpt-4"))
        assert result.token_score == 0

    def test_error_adds_points(self):
        """Failed calls add 25."""
        result = calculate_risk_score(
            RiskScoreInput(prompt="hi", response="ok", model="gpt-4", has_error=True)
        )
        assert result.error_score == 25
        assert result.final_score == 25


class TestModelAdjustment:
    """Test model risk lookups."""

    def test_exact_match(self):
        assert get_model_adjustment("gpt-3.5-turbo") == 2
        assert get_model_adjustment("llama-2") == 3

    def test_longest_contained_key_wins(self):
        """Dated model names resolve to the most specific known family."""
        assert get_model_adjustment("gpt-4-turbo-2024-04-09") == 0
        assert get_model_adjustment("claude-3-opus") == -1

    def test_unknown_model(self):
        assert get_model_adjustment("mistral-large") == 0

    def test_case_insensitive(self):
        assert get_model_adjustment("GPT-3.5-Turbo") == 2


class TestClamping:
    """Test the final score stays within 0-100."""

    def test_negative_raw_score_clamps_to_zero(self):
        """A negative model adjustment alone cannot go below zero."""
        result = calculate_risk_score(RiskScoreInput(prompt="hi", response="ok", model="o3-mini"))
        assert result.raw_score == -2
        assert result.final_score == 0

    def test_everything_at_once_clamps_to_hundred(self):
        """All factors together exceed 100 and are clamped."""
        result = calculate_risk_score(RiskScoreInput(
            prompt="malware exploit " + "a" * 6000,
            response="b" * 11000,
            model="llama-2",
            tokens=9000,
            has_error=True,
        ))
        assert result.raw_score == 10 + 10 + 40 + 15 + 25 + 3
        assert result.final_score == 100

    def test_custom_weights(self):
        """Scoring weights come from configuration."""
        config = ScoringConfig(keyword_points=5, keyword_cap=5)
        score = get_risk_score(RiskScoreInput(prompt="bomb weapon", response="no", model="gpt-4"), config)
        assert score == 5


class TestValidation:
    """Test malformed input is rejected."""

    def test_non_string_prompt(self):
        with pytest.raises(ValidationError, match="prompt"):
            calculate_risk_score(RiskScoreInput(prompt=None, response="ok", model="gpt-4"))

    def test_negative_tokens(self):
        with pytest.raises(ValidationError, match="tokens"):
            calculate_risk_score(RiskScoreInput(prompt="hi", response="ok", model="gpt-4", tokens=-1))

    def test_validation_error_is_value_error(self):
        """Callers that catch ValueError still see validation failures."""
        with pytest.raises(ValueError):
            calculate_risk_score(RiskScoreInput(prompt="hi", response=42, model="gpt-4"))


class TestScoreProperties:
    """Test properties that hold for every input."""

    BASE = dict(prompt="hello", response="hi", model="gpt-4", tokens=10, has_error=False)
    FACTORS = [
        dict(prompt="a" * 6000),
        dict(response="b" * 11000),
        dict(prompt="exploit it"),
        dict(tokens=5000),
        dict(has_error=True),
    ]

    @pytest.mark.parametrize("factor", FACTORS)
    def test_adding_a_factor_never_decreases_score(self, factor):
        before = get_risk_score(RiskScoreInput(**self.BASE))
        after = get_risk_score(RiskScoreInput(**{**self.BASE, **factor}))
        assert after > before

    @pytest.mark.parametrize("model", ["gpt-4", "o3-mini", "llama-2", "unknown"])
    def test_score_always_in_range(self, model):
        for factor in [{}] + self.FACTORS:
            score = get_risk_score(RiskScoreInput(**{**self.BASE, **factor, "model": model}))
            assert 0 <= score <= 100

    def test_keyword_case_does_not_matter(self):
        upper = get_risk_score(RiskScoreInput(prompt="EXPLOIT", response="", model="gpt-4"))
        lower = get_risk_score(RiskScoreInput(prompt="exploit", response="", model="gpt-4"))
        assert upper == lower == 20
