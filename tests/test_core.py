"""
Core Decision Logic Tests — Matcher, Scorer, Escalation, Prompts
=================================================================
Pure-function tests: no provider, no database.

Run:
  pytest tests/test_core.py -v
"""

from __future__ import annotations

import pytest

from agent.models import TrainingEntry


# ═══════════════════════════════════════════════════════════════════════
# Knowledge Base Matcher
# ═══════════════════════════════════════════════════════════════════════


class TestSimilarity:
    """Word-set Jaccard similarity."""

    def test_identical_strings(self):
        """same words → 1.0."""
        from agent.matcher import similarity

        assert similarity("qual o preço", "qual o preço") == 1.0

    def test_case_insensitive(self):
        """'Qual O Preço' vs 'qual o preço' → 1.0."""
        from agent.matcher import similarity

        assert similarity("Qual O Preço", "qual o preço") == 1.0

    def test_disjoint(self):
        """no shared words → 0.0."""
        from agent.matcher import similarity

        assert similarity("bom dia", "qual o preço") == 0.0

    def test_partial_overlap(self):
        """2 shared words of 4 distinct → 0.5."""
        from agent.matcher import similarity

        assert similarity("qual o preço", "qual o frete") == 0.5

    def test_symmetric(self):
        """similarity(a, b) == similarity(b, a)."""
        from agent.matcher import similarity

        a, b = "quanto custa o frete", "o frete custa caro hoje"
        assert similarity(a, b) == similarity(b, a)

    def test_duplicates_collapse(self):
        """repeated words count once → 'oi oi oi' vs 'oi' = 1.0."""
        from agent.matcher import similarity

        assert similarity("oi oi oi", "oi") == 1.0

    def test_empty_inputs(self):
        """both empty / whitespace → 0.0, no division error."""
        from agent.matcher import similarity

        assert similarity("", "") == 0.0
        assert similarity("   ", "\n") == 0.0

    def test_punctuation_is_part_of_token(self):
        """'preço?' and 'preço' are different tokens."""
        from agent.matcher import similarity

        assert similarity("preço?", "preço") == 0.0


class TestRank:
    """Selecting similar training entries."""

    def test_empty_entries(self):
        """entries=[] → []."""
        from agent.matcher import rank

        assert rank("oi", []) == []

    def test_threshold_is_strict(self):
        """score exactly 0.7 is not similar."""
        from agent.matcher import rank

        # 7 shared of 10 distinct words → 0.7
        entry = TrainingEntry(category="c", question="a b c d e f g h i j", answer="x")
        assert rank("a b c d e f g", [entry]) == []

    def test_above_threshold_included(self):
        """9 shared of 10 words → 0.9 > 0.7 → included."""
        from agent.matcher import rank

        entry = TrainingEntry(category="c", question="a b c d e f g h i", answer="x")
        matches = rank("a b c d e f g h i j", [entry])
        assert len(matches) == 1
        assert matches[0].score == pytest.approx(0.9)
        assert matches[0].entry is entry

    def test_sorted_best_first_stable(self):
        """higher score first; ties keep caller order."""
        from agent.matcher import rank

        tie_1 = TrainingEntry(category="t1", question="a b c d e f g h i", answer="x")
        best = TrainingEntry(category="best", question="a b c d e f g h i j", answer="x")
        tie_2 = TrainingEntry(category="t2", question="a b c d e f g h i", answer="x")

        matches = rank("a b c d e f g h i j", [tie_1, best, tie_2])
        assert [m.entry.category for m in matches] == ["best", "t1", "t2"]

    def test_does_not_use_answer_text(self):
        """matching is against the question only."""
        from agent.matcher import rank

        entry = TrainingEntry(category="c", question="horário", answer="qual o preço do frete")
        assert rank("qual o preço do frete", [entry]) == []


# ═══════════════════════════════════════════════════════════════════════
# Confidence Scorer
# ═══════════════════════════════════════════════════════════════════════


class TestConfidence:
    """Additive confidence table."""

    def test_base_only(self):
        """short reply, no matches → 0.5."""
        from agent.scorer import confidence_from_matches

        assert confidence_from_matches("Olá!", 0) == 0.5

    def test_length_thresholds_are_strict(self):
        """50 chars → 0.5, 51 → 0.7, 100 → 0.7, 101 → 0.8."""
        from agent.scorer import confidence_from_matches

        assert confidence_from_matches("x" * 50, 0) == 0.5
        assert confidence_from_matches("x" * 51, 0) == 0.7
        assert confidence_from_matches("x" * 100, 0) == 0.7
        assert confidence_from_matches("x" * 101, 0) == 0.8

    def test_knowledge_bonus(self):
        """1 or 2 matches → +0.2; 3 matches → +0.3."""
        from agent.scorer import confidence_from_matches

        assert confidence_from_matches("ok", 1) == 0.7
        assert confidence_from_matches("ok", 2) == 0.7
        assert confidence_from_matches("ok", 3) == 0.8

    def test_capped_at_one(self):
        """every bonus applies → exactly 1.0, never more."""
        from agent.scorer import confidence_from_matches

        assert confidence_from_matches("x" * 120, 3) == 1.0
        assert confidence_from_matches("x" * 5000, 50) == 1.0

    def test_empty_entries_scenario(self):
        """entries=[], message='oi' → no knowledge bonus."""
        from agent.scorer import score

        assert score("Olá!", [], "oi") == 0.5
        assert score("x" * 60, [], "oi") == 0.7

    def test_three_strong_matches_120_chars(self):
        """three entries at 0.9 similarity + 120-char reply → 1.0."""
        from agent.scorer import score

        entries = [
            TrainingEntry(category=f"c{i}", question="a b c d e f g h i", answer="x")
            for i in range(3)
        ]
        assert score("y" * 120, entries, "a b c d e f g h i j") == 1.0

    def test_precomputed_matches_used(self, training_entries):
        """matches= bypasses ranking."""
        from agent.models import ScoredEntry
        from agent.scorer import score

        matches = [ScoredEntry(entry=training_entries[0], score=1.0)]
        assert score("ok", training_entries, "nada a ver", matches=matches) == 0.7


# ═══════════════════════════════════════════════════════════════════════
# Escalation Classifier
# ═══════════════════════════════════════════════════════════════════════


class TestEscalation:
    """Escalation rules: low confidence, customer phrases, hedged replies."""

    def test_confident_plain_reply(self):
        """confidence 0.8, neutral texts → no escalation."""
        from agent.escalation import escalation_reasons, should_escalate

        assert escalation_reasons("qual o preço", "Custa R$ 10.", 0.8) == []
        assert should_escalate("qual o preço", "Custa R$ 10.", 0.8) is False

    def test_threshold_boundary(self):
        """0.6 does not escalate; 0.59 does."""
        from agent.escalation import should_escalate

        assert should_escalate("oi", "Olá", 0.6) is False
        assert should_escalate("oi", "Olá", 0.59) is True

    def test_customer_keyword_overrides_confidence(self):
        """'quero falar com humano' at 0.95 → escalate."""
        from agent.escalation import escalation_reasons, should_escalate

        assert should_escalate("quero falar com humano", "Claro!", 0.95) is True
        assert escalation_reasons("quero falar com humano", "Claro!", 0.95) == [
            "customer_keyword:quero falar com humano"
        ]

    def test_uncertain_reply_overrides_confidence(self):
        """reply 'não tenho certeza, mas...' at 0.95 → escalate."""
        from agent.escalation import escalation_reasons, should_escalate

        assert should_escalate("tudo bem", "não tenho certeza, mas...", 0.95) is True
        assert escalation_reasons("tudo bem", "não tenho certeza, mas...", 0.95) == [
            "uncertain_response:não tenho certeza"
        ]

    def test_case_insensitive_match(self):
        """'QUERO CANCELAR' matches 'quero cancelar'."""
        from agent.escalation import should_escalate

        assert should_escalate("QUERO CANCELAR meu plano", "Ok.", 0.9) is True
        assert should_escalate("oi", "Talvez amanhã.", 0.9) is True

    def test_substring_not_word_boundary(self):
        """'não entendi a piada' still escalates."""
        from agent.escalation import should_escalate

        assert should_escalate("não entendi a piada", "Haha!", 0.9) is True

    def test_all_reasons_in_rule_order(self):
        """every rule fires → three reasons, rule order."""
        from agent.escalation import escalation_reasons

        reasons = escalation_reasons("problema urgente aqui", "Talvez.", 0.5)
        assert reasons == [
            "low_confidence",
            "customer_keyword:problema urgente",
            "uncertain_response:talvez",
        ]

    def test_custom_phrase_lists(self):
        """custom keywords replace the defaults."""
        from agent.escalation import should_escalate

        assert should_escalate("quero cancelar", "Ok", 0.9, keywords=(), indicators=()) is False
        assert should_escalate("reembolso já", "Ok", 0.9, keywords=("reembolso",)) is True

    def test_deterministic(self):
        """same inputs → same answer."""
        from agent.escalation import should_escalate

        results = {should_escalate("isso não resolve", "Hmm", 0.7) for _ in range(20)}
        assert results == {True}


# ═══════════════════════════════════════════════════════════════════════
# Prompt Templates
# ═══════════════════════════════════════════════════════════════════════


class TestPrompts:
    """System prompt and training context block."""

    def test_no_entries_persona_only(self):
        """entries=[] → persona without the training header."""
        from agent.prompts import SYSTEM_PROMPT_V1, TRAINING_HEADER, build_system_prompt

        prompt = build_system_prompt([])
        assert prompt == SYSTEM_PROMPT_V1.strip()
        assert TRAINING_HEADER not in prompt

    def test_entry_format(self):
        """entry → 'Category/Question/Answer' lines."""
        from agent.prompts import format_entry

        entry = TrainingEntry(category="Geral", question="oi?", answer="Olá!")
        assert format_entry(entry) == "Category: Geral\nQuestion: oi?\nAnswer: Olá!"

    def test_entry_context_appended(self, training_entries):
        """entry with context → extra 'Context:' line."""
        from agent.prompts import format_entry

        assert format_entry(training_entries[1]).endswith("\nContext: Frete grátis acima de R$ 200.")

    def test_all_entries_in_caller_order(self, training_entries):
        """every entry appears once, blank-line separated, in order."""
        from agent.prompts import TRAINING_HEADER, build_system_prompt

        prompt = build_system_prompt(training_entries)
        assert TRAINING_HEADER in prompt
        positions = [prompt.index(f"Category: {e.category}") for e in training_entries]
        assert positions == sorted(positions)
        assert "Answer: Segunda a sexta, das 8h às 18h.\n\nCategory: Entrega" in prompt

    def test_persona_is_portuguese(self):
        """persona asks for Brazilian Portuguese answers."""
        from agent.prompts import SYSTEM_PROMPTS

        assert "português brasileiro" in SYSTEM_PROMPTS["v1"]

    def test_unknown_version(self):
        """unknown version → KeyError."""
        from agent.prompts import build_system_prompt

        with pytest.raises(KeyError):
            build_system_prompt([], version="v999")
