"""
Tests for the feature deduplication classifier.

Tests the retrieval-then-classify pipeline with deterministic doubles:
- No candidates above threshold -> no completion call, negative result
- Matches ordered by descending model confidence
- Ids the model invents are dropped; unknown labels become Related
- Malformed model output fails the whole call
- Dark mode end-to-end scenario

Usage:
    pytest tests/test_dedup_agent.py -v
"""

import json
from datetime import datetime, timezone

import pytest

from product_intel.ai.candidate_retriever import CandidateRetriever
from product_intel.ai.dedup_agent import (
    DEDUP_SYSTEM,
    NO_MATCH_REASONING,
    NO_MATCH_SUMMARY,
    DeduplicationClassifier,
)
from product_intel.ai.dedup_models import (
    DeduplicationRequest,
    FeatureRequestCandidate,
    MatchType,
    ModelDeduplicationResponse,
    RetrievedCandidate,
    parse_timestamp,
)
from product_intel.ai.tier_policy import MatchTierPolicy
from product_intel.config import DeduplicationConfig
from product_intel.errors import (
    EmbeddingUnavailable,
    InvalidArgument,
    InvalidModelResponse,
    ProviderUnavailable,
    RateLimited,
)

from conftest import FakeEmbedder, ScriptedLLM, model_json


def make_config(**overrides) -> DeduplicationConfig:
    values = dict(
        similarity_threshold=0.70,
        max_results=10,
        temperature=0.1,
        max_tokens=2000,
        duplicate_confidence=0.90,
        similar_confidence=0.70,
        related_confidence=0.50,
    )
    values.update(overrides)
    return DeduplicationConfig(**values)


def make_classifier(embedder, llm, index, **config_overrides) -> DeduplicationClassifier:
    return DeduplicationClassifier(
        embedder=embedder,
        llm_client=llm,
        retriever=CandidateRetriever(index),
        config=make_config(**config_overrides),
    )


DARK_MODE = DeduplicationRequest(
    title="Add dark mode",
    description="Users want a dark theme option in settings",
)


# ============================================================================
# SHORT CIRCUIT
# ============================================================================

class TestNoCandidates:
    """Nothing clears the retrieval threshold."""

    @pytest.mark.asyncio
    async def test_empty_corpus_skips_completion(self, embedder, llm, index):
        classifier = make_classifier(embedder, llm, index)

        result = await classifier.analyze(DARK_MODE)

        assert result.has_duplicates is False
        assert result.has_similar is False
        assert result.matches == []
        assert result.summary == NO_MATCH_SUMMARY
        assert result.reasoning == NO_MATCH_REASONING
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_unrelated_corpus_skips_completion(self, embedder, llm, index, seed_feature_request):
        await seed_feature_request("fr-1", "CSV export", "Download reports as a spreadsheet")
        classifier = make_classifier(embedder, llm, index)

        result = await classifier.analyze(DARK_MODE)

        assert result.matches == []
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_result_carries_embedding(self, embedder, llm, index):
        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)
        assert result.embedding_vector.dimensions == 1536
        assert result.processing_time_ms >= 0


# ============================================================================
# CLASSIFICATION
# ============================================================================

class TestClassification:
    """Model output mapped onto retrieved candidates."""

    @pytest.mark.asyncio
    async def test_duplicate_ordered_before_related(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-related", "Night mode schedule", "Switch theme at sunset")
        await seed_feature_request("fr-dup", "Dark theme support", "Add a dark theme toggle to user settings")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-related", "matchType": "Related", "confidence": 0.55, "reasoning": "Scheduling"},
            {"requestId": "fr-dup", "matchType": "Duplicate", "confidence": 0.95, "reasoning": "Same ask"},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert [m.request_id for m in result.matches] == ["fr-dup", "fr-related"]
        assert [m.match_type for m in result.matches] == [MatchType.DUPLICATE, MatchType.RELATED]
        assert result.has_duplicates is True
        assert result.has_similar is False

    @pytest.mark.asyncio
    async def test_hallucinated_id_dropped(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": "Similar", "confidence": 0.8},
            {"requestId": "fr-999", "matchType": "Duplicate", "confidence": 0.99},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert [m.request_id for m in result.matches] == ["fr-1"]
        assert result.has_duplicates is False
        assert result.has_similar is True

    @pytest.mark.asyncio
    async def test_unknown_label_defaults_to_related(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": "Kinda the same", "confidence": 0.6},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.matches[0].match_type == MatchType.RELATED
        assert result.matches[0].similarity_score == 0.70

    @pytest.mark.asyncio
    @pytest.mark.parametrize("label", [None, 2, ["Duplicate"]])
    async def test_non_string_label_defaults_to_related(self, embedder, index, seed_feature_request, label):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": label, "confidence": 0.6},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert len(result.matches) == 1
        assert result.matches[0].match_type == MatchType.RELATED

    @pytest.mark.asyncio
    async def test_missing_label_defaults_to_related(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([{"requestId": "fr-1", "confidence": 0.6}]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.matches[0].match_type == MatchType.RELATED

    @pytest.mark.asyncio
    async def test_uuid_ids_match_regardless_of_case(self, embedder, index, seed_feature_request):
        stored_id = "3F2504E0-4F89-11D3-9A0C-0305E82C3301"
        await seed_feature_request(stored_id, "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": " 3f2504e0-4f89-11d3-9a0c-0305e82c3301 ", "matchType": "Duplicate", "confidence": 0.92},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert [m.request_id for m in result.matches] == [stored_id]

    @pytest.mark.asyncio
    async def test_labels_are_case_insensitive(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": "duplicate", "confidence": 0.93},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.matches[0].match_type == MatchType.DUPLICATE

    @pytest.mark.asyncio
    async def test_repeated_id_keeps_first(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": "Similar", "confidence": 0.75},
            {"requestId": "fr-1", "matchType": "Duplicate", "confidence": 0.95},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert len(result.matches) == 1
        assert result.matches[0].match_type == MatchType.SIMILAR

    @pytest.mark.asyncio
    async def test_scores_kept_separately(self, embedder, index, seed_feature_request):
        """Tier display score, raw retrieval cosine and model confidence all survive."""
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-1", "matchType": "Similar", "confidence": 0.81},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)
        match = result.matches[0]

        assert match.confidence_score == pytest.approx(0.81)
        assert match.similarity_score == pytest.approx(0.85)
        assert match.retrieval_similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_equal_confidence_keeps_model_order(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-a", "Dark theme", "Dark mode everywhere")
        await seed_feature_request("fr-b", "Night theme", "Night mode for the dashboard")
        llm = ScriptedLLM(model_json([
            {"requestId": "fr-b", "matchType": "Similar", "confidence": 0.8},
            {"requestId": "fr-a", "matchType": "Similar", "confidence": 0.8},
        ]))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert [m.request_id for m in result.matches] == ["fr-b", "fr-a"]

    @pytest.mark.asyncio
    async def test_excluded_request_never_sent(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-self", "Add dark mode", "Users want a dark theme option in settings")
        llm = ScriptedLLM(model_json([]))

        request = DeduplicationRequest(
            title=DARK_MODE.title,
            description=DARK_MODE.description,
            exclude_id="fr-self",
        )
        result = await make_classifier(embedder, llm, index).analyze(request)

        assert result.matches == []
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_model_summary_passed_through(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json(
            [{"requestId": "fr-1", "matchType": "Duplicate", "confidence": 0.97}],
            summary="Found 1 duplicate",
            reasoning="Merge into fr-1",
        ))

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.summary == "Found 1 duplicate"
        assert result.reasoning == "Merge into fr-1"
        assert result.duplicate_count == 1
        assert result.similar_count == 0


# ============================================================================
# COMPLETION CALL
# ============================================================================

class TestCompletionCall:
    """What the classifier sends to the completion provider."""

    @pytest.mark.asyncio
    async def test_prompt_and_settings(self, embedder, index, seed_feature_request):
        await seed_feature_request(
            "fr-1", "Dark theme support", "Add a dark theme toggle",
            requester_name="Ada", requester_company=None,
            submitted_at=datetime(2024, 5, 17), status="Planned",
        )
        llm = ScriptedLLM(model_json([]))

        await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        call = llm.calls[0]
        assert call["temperature"] == 0.1
        assert call["max_tokens"] == 2000
        system, user = call["messages"]
        assert system == {"role": "system", "content": DEDUP_SYSTEM}
        prompt = user["content"]
        assert "Title: Add dark mode" in prompt
        assert "1. [ID: fr-1]" in prompt
        assert "Submitted: 2024-05-17 by Ada (N/A)" in prompt
        assert "Status: Planned" in prompt
        assert "confidence >= 90%" in prompt
        assert "confidence >= 70%" in prompt
        assert "confidence >= 50%" in prompt

    @pytest.mark.asyncio
    async def test_custom_tier_bands_in_prompt(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(model_json([]))
        classifier = DeduplicationClassifier(
            embedder=embedder,
            llm_client=llm,
            retriever=CandidateRetriever(index),
            config=make_config(),
            tier_policy=MatchTierPolicy(
                duplicate_confidence=0.95, similar_confidence=0.80, related_confidence=0.60
            ),
        )

        await classifier.analyze(DARK_MODE)

        prompt = llm.calls[0]["messages"][1]["content"]
        assert "confidence >= 95%" in prompt
        assert "confidence >= 60%" in prompt

    @pytest.mark.asyncio
    async def test_title_weighted_embedding(self, embedder, llm, index):
        await make_classifier(embedder, llm, index).analyze(DARK_MODE)
        assert embedder.calls == [
            "Add dark mode\n\nAdd dark mode\n\nUsers want a dark theme option in settings"
        ]


# ============================================================================
# FAILURES
# ============================================================================

class TestFailures:
    """Errors propagate; no partial result is returned."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [
        "I think fr-1 is a duplicate.",
        "",
        "[1, 2, 3]",
        json.dumps({"matches": "none", "summary": "x", "overallReasoning": "y"}),
        json.dumps({"matches": [{"requestId": "fr-1", "matchType": "Duplicate", "confidence": 1.7}],
                    "summary": "x", "overallReasoning": "y"}),
    ])
    async def test_malformed_response_raises(self, embedder, index, seed_feature_request, content):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        llm = ScriptedLLM(content)

        with pytest.raises(InvalidModelResponse):
            await make_classifier(embedder, llm, index).analyze(DARK_MODE)

    @pytest.mark.asyncio
    async def test_fenced_json_accepted(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")
        payload = model_json([{"requestId": "fr-1", "matchType": "Duplicate", "confidence": 0.9}])
        llm = ScriptedLLM(f"```json\n{payload}\n```")

        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.has_duplicates is True

    @pytest.mark.asyncio
    async def test_embedding_failure(self, llm, index):
        embedder = FakeEmbedder(error=EmbeddingUnavailable("down", provider="fake"))

        with pytest.raises(EmbeddingUnavailable):
            await make_classifier(embedder, llm, index).analyze(DARK_MODE)
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_generic_provider_failure_becomes_embedding_unavailable(self, llm, index):
        embedder = FakeEmbedder(error=ProviderUnavailable("timeout", provider="fake"))

        with pytest.raises(EmbeddingUnavailable) as exc_info:
            await make_classifier(embedder, llm, index).generate_embedding("Title", "Description")
        assert exc_info.value.provider == "fake"

    @pytest.mark.asyncio
    async def test_rate_limit_propagates_unchanged(self, llm, index):
        embedder = FakeEmbedder(error=RateLimited(provider="fake", retry_after=3.0))

        with pytest.raises(RateLimited) as exc_info:
            await make_classifier(embedder, llm, index).generate_embedding("Title", "Description")
        assert exc_info.value.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_completion_failure_propagates(self, embedder, index, seed_feature_request):
        await seed_feature_request("fr-1", "Dark theme support", "Add a dark theme toggle")

        class BrokenLLM(ScriptedLLM):
            async def complete(self, messages, max_tokens=1024, temperature=0.7):
                raise ProviderUnavailable("completion down", provider="fake")

        with pytest.raises(ProviderUnavailable):
            await make_classifier(embedder, BrokenLLM(), index).analyze(DARK_MODE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title,description", [
        ("", "Some description"),
        ("   ", "Some description"),
        ("Some title", ""),
        ("Some title", "\n\t"),
    ])
    async def test_blank_input_rejected(self, embedder, llm, index, title, description):
        classifier = make_classifier(embedder, llm, index)
        with pytest.raises(InvalidArgument):
            await classifier.generate_embedding(title, description)
        assert embedder.call_count == 0


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class TestModels:
    """Tests for DeduplicationRequest and ModelDeduplicationResponse."""

    @pytest.mark.parametrize("kwargs", [
        {"title": "", "description": "d"},
        {"title": "t", "description": " "},
        {"title": "t", "description": "d", "similarity_threshold": 1.2},
        {"title": "t", "description": "d", "max_results": 0},
    ])
    def test_invalid_request(self, kwargs):
        with pytest.raises(InvalidArgument):
            DeduplicationRequest(**kwargs)

    def test_request_defaults(self):
        request = DeduplicationRequest(title="t", description="d")
        assert request.similarity_threshold == 0.70
        assert request.max_results == 10
        assert request.exclude_id is None

    def test_numeric_ids_coerced(self):
        parsed = ModelDeduplicationResponse.parse(model_json([
            {"requestId": 42, "matchType": "Similar", "confidence": 0.7},
        ]))
        assert parsed.matches[0].request_id == "42"

    def test_missing_reasoning_allowed(self):
        parsed = ModelDeduplicationResponse.parse(model_json([
            {"requestId": "x", "matchType": "Similar", "confidence": 0.7},
        ]))
        assert parsed.matches[0].reasoning == ""

    def test_raw_content_truncated(self):
        with pytest.raises(InvalidModelResponse) as exc_info:
            ModelDeduplicationResponse.parse("x" * 2000)
        assert len(exc_info.value.raw_content) == 500

    def test_match_type_parse(self):
        assert MatchType.parse("Duplicate") == MatchType.DUPLICATE
        assert MatchType.parse(" similar ") == MatchType.SIMILAR
        assert MatchType.parse("Unrelated") is None
        assert MatchType.parse(None) is None

    @pytest.mark.parametrize("value,expected", [
        ("2024-03-01T09:30:00Z", datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)),
        ("2024-03-01T09:30:00+00:00", datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)),
        ("2024-03-01", datetime(2024, 3, 1)),
        (datetime(2024, 3, 1), datetime(2024, 3, 1)),
        (None, None),
        ("last tuesday", None),
        (12345, None),
    ])
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected

    def test_zulu_timestamp_from_payload(self):
        item = FeatureRequestCandidate.from_payload("fr-1", {"title": "t", "submitted_at": "2024-03-01T09:30:00Z"})
        assert item.submitted_at == datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_retrieved_candidate_id(self):
        candidate = RetrievedCandidate(
            item=FeatureRequestCandidate(id="fr-1", title="t", description="d"),
            similarity=0.9,
        )
        assert candidate.id == "fr-1"


# ============================================================================
# TIER POLICY
# ============================================================================

class TestMatchTierPolicy:
    """Tests for MatchTierPolicy."""

    def test_defaults(self):
        policy = MatchTierPolicy()
        assert policy.confidence_band(MatchType.DUPLICATE) == 0.90
        assert policy.confidence_band(MatchType.SIMILAR) == 0.70
        assert policy.confidence_band(MatchType.RELATED) == 0.50

    def test_display_scores(self):
        policy = MatchTierPolicy()
        assert policy.display_score(MatchType.DUPLICATE) == 0.95
        assert policy.display_score(MatchType.SIMILAR) == 0.85
        assert policy.display_score(MatchType.RELATED) == 0.70
        assert policy.display_score(None) == 0.60

    def test_from_config(self):
        policy = MatchTierPolicy.from_config(make_config(duplicate_confidence=0.97))
        assert policy.duplicate_confidence == 0.97

    @pytest.mark.parametrize("bands", [(0.7, 0.9, 0.5), (0.9, 0.9, 0.5), (1.2, 0.7, 0.5), (0.9, 0.7, -0.1)])
    def test_invalid_bands(self, bands):
        with pytest.raises(ValueError):
            MatchTierPolicy(
                duplicate_confidence=bands[0],
                similar_confidence=bands[1],
                related_confidence=bands[2],
            )


# ============================================================================
# END TO END
# ============================================================================

class TestDarkModeScenario:
    """A new request against one near-duplicate already on file."""

    @pytest.mark.asyncio
    async def test_dark_mode_duplicate(self, embedder, index, seed_feature_request):
        await seed_feature_request(
            "fr-42", "Dark theme support", "Add a dark theme toggle to user settings"
        )
        await seed_feature_request("fr-7", "Export to CSV", "Download the roadmap as a spreadsheet")

        def answer(messages):
            prompt = messages[-1]["content"]
            assert "[ID: fr-42]" in prompt
            assert "[ID: fr-7]" not in prompt
            return model_json(
                [{"requestId": "fr-42", "matchType": "Duplicate", "confidence": 0.96,
                  "reasoning": "Both ask for a dark theme in settings"}],
                summary="Found 1 duplicate",
                reasoning="Merge with fr-42",
            )

        llm = ScriptedLLM(answer)
        result = await make_classifier(embedder, llm, index).analyze(DARK_MODE)

        assert result.has_duplicates is True
        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.match_type == MatchType.DUPLICATE
        assert match.confidence_score >= 0.90
        assert match.request_id == "fr-42"
        assert match.title == "Dark theme support"
        assert match.to_dict()["match_type"] == "Duplicate"
        assert "embedding_vector" not in result.to_dict()
        assert len(result.to_dict(include_embedding=True)["embedding_vector"]) == 1536
        assert llm.call_count == 1
