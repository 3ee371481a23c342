"""Tests for AIPersonalizedGenerator."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from personalization.generators.ai_personalized import AIPersonalizedGenerator
from personalization.models import (
    BehaviorType,
    ContentType,
    RecommendationReason,
    RecommendationSource,
)
from personalization.profile import InterestProfileBuilder
from personalization.stores import InMemoryContentStore

from conftest import clock, log, make_item


def _make_generator(profile_builder, behavior_store, content_store, reply: str):
    client = MagicMock()
    client.generate_content.return_value = reply
    gen = AIPersonalizedGenerator(client, profile_builder, behavior_store, content_store)
    return gen, client


def _reply(*entries: dict) -> str:
    return "Here you go:\n```json\n" + json.dumps(list(entries)) + "\n```"


class TestAIPersonalizedGenerator:
    def test_source_tag(self, profile_builder, behavior_store, content_store) -> None:
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, "")
        assert gen.source is RecommendationSource.AI_PERSONALIZED

    def test_parses_model_reply(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply(
            {"id": "cook_new", "score": 0.9, "reason": "based_on_interests", "explanation": "Fresh recipe."},
            {"id": "travel1", "score": 0.4, "reason": "new_but_relevant", "explanation": "Try it."},
        )
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        recs = gen.generate("u1", ContentType.POST, 10)
        assert [r.content_id for r in recs] == ["cook_new", "travel1"]
        assert recs[0].reason is RecommendationReason.BASED_ON_INTERESTS
        assert recs[0].metadata["explanation"] == "Fresh recipe."

    def test_unknown_ids_discarded(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply({"id": "made_up", "score": 1.0}, {"id": "cars", "score": 0.5})
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        assert [r.content_id for r in gen.generate("u1", ContentType.POST, 10)] == ["cars"]

    def test_duplicate_ids_keep_first(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply({"id": "cars", "score": 0.2}, {"id": "cars", "score": 0.9})
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        recs = gen.generate("u1", ContentType.POST, 10)
        assert len(recs) == 1
        assert recs[0].score == pytest.approx(0.2)

    def test_scores_clamped(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply(
            {"id": "cars", "score": 7},
            {"id": "mixed", "score": -1},
            {"id": "travel1", "score": "high"},
        )
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        scores = {r.content_id: r.score for r in gen.generate("u1", ContentType.POST, 10)}
        assert scores == {"cars": 1.0, "mixed": 0.0, "travel1": 0.0}

    def test_unknown_reason_mapped(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply(
            {"id": "cars", "score": 0.5, "reason": "vibes"},
            {"id": "mixed", "score": 0.4, "reason": "friends_engaged"},
        )
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        reasons = {r.reason for r in gen.generate("u1", ContentType.POST, 10)}
        assert reasons == {RecommendationReason.SIMILAR_CONTENT}

    def test_unparseable_reply_returns_empty(self, profile_builder, behavior_store, content_store) -> None:
        gen, _ = _make_generator(
            profile_builder, behavior_store, content_store, "Sorry, I can't help with that."
        )
        assert gen.generate("u1", ContentType.POST, 10) == []

    def test_no_candidates_skips_model(self, profile_builder, behavior_store, content_store) -> None:
        gen, client = _make_generator(profile_builder, behavior_store, content_store, "[]")
        assert gen.generate("u1", ContentType.REEL, 10) == []
        client.generate_content.assert_not_called()

    def test_prompt_contents(self, behavior_store, behavior_log) -> None:
        store = InMemoryContentStore(
            [
                make_item("liked", ["jazz"]),
                make_item("mine", ["jazz"], creator_id="u1"),
                make_item("other", ["blues"]),
            ]
        )
        builder = InterestProfileBuilder(behavior_store, store, clock=clock)
        log(behavior_log, "u1", BehaviorType.LIKE, "liked")
        gen, client = _make_generator(builder, behavior_store, store, "[]")
        gen.generate("u1", ContentType.POST, 5)

        prompt = client.generate_content.call_args[0][0]
        assert '"other"' in prompt
        assert '"mine"' not in prompt
        assert "jazz" in prompt
        assert "at most 5" in prompt

    def test_limit(self, profile_builder, behavior_store, content_store) -> None:
        reply = _reply(*({"id": cid, "score": 0.5} for cid in ("cars", "mixed", "travel1")))
        gen, _ = _make_generator(profile_builder, behavior_store, content_store, reply)
        assert len(gen.generate("u1", ContentType.POST, 2)) == 2


class TestParseReply:
    def test_extracts_array(self) -> None:
        assert AIPersonalizedGenerator.parse_reply('noise [{"id": "a"}] noise') == [{"id": "a"}]

    def test_no_array(self) -> None:
        with pytest.raises(ValueError):
            AIPersonalizedGenerator.parse_reply("nothing here")

    def test_malformed_json(self) -> None:
        with pytest.raises(ValueError):
            AIPersonalizedGenerator.parse_reply('[{"id": }]')
