"""Tests for the writer agent and its pacing helpers."""

import pytest

from serialist.agents.writer import ChapterWriter, infer_scene_type, scene_guidance, voice_guide
from serialist.errors import ProviderError
from serialist.models import ChapterOutline, SceneOutline
from tests.fakes import FakeLLM


def prose(words: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(words))


@pytest.fixture
def outline() -> ChapterOutline:
    return ChapterOutline(
        chapter_number=12,
        title="Ash",
        pov="Lin Wei",
        scenes=[
            SceneOutline(order=1, goal="Duel the envoy", conflict="a sword clash", characters=["Lin Wei", "Envoy Qiao"]),
            SceneOutline(order=2, goal="Share a joke", characters=["Lin Wei", "Fat Bao"], comedic=True),
            SceneOutline(order=3, goal="Meditate on the furnace", pace="slow", characters=["Lin Wei"]),
        ],
    )


class TestPacing:
    """Tests for scene typing and guidance."""

    def test_infers_scene_types(self, outline):
        """Should type scenes from their goal and conflict text."""
        assert [infer_scene_type(s) for s in outline.scenes] == ["action", "comedy", "cultivation"]

    def test_unknown_scene_defaults_to_dialogue(self):
        """Should fall back to dialogue pacing."""
        assert infer_scene_type(SceneOutline(goal="Walk home")) == "dialogue"

    def test_guidance_lists_rhythm_per_scene(self, outline):
        """Should give each scene a sentence band and a dialogue band."""
        guidance = scene_guidance(outline)
        assert "sentences of 5-15 words" in guidance
        assert "Include a light, genuinely funny moment." in guidance

    def test_voice_guide_names_each_speaker_once(self, outline):
        """Should list every distinct speaker once, using known voices."""
        guide = voice_guide(outline, {"Fat Bao": "loud, food metaphors"})
        assert guide.count("Lin Wei") == 1
        assert "Fat Bao: loud, food metaphors" in guide


class TestChapterWriter:
    """Tests for ChapterWriter.write_chapter."""

    @pytest.mark.asyncio
    async def test_long_enough_draft_is_not_continued(self, outline):
        """Should make a single call when the draft reaches 70% of target."""
        llm = FakeLLM([prose(2000)])
        draft = await ChapterWriter(llm).write_chapter(outline, "ctx", target_words=2800)
        assert len(llm.calls) == 1
        assert draft.word_count == 2000
        assert not draft.continued

    @pytest.mark.asyncio
    async def test_short_draft_gets_exactly_one_continuation(self, outline):
        """Should continue a 1200/2800 draft once and sum the word counts."""
        llm = FakeLLM([prose(1200), prose(1000, prefix="c")])
        draft = await ChapterWriter(llm).write_chapter(outline, "ctx", target_words=2800)
        assert len(llm.calls) == 2
        assert draft.continued
        assert draft.word_count == 2200
        assert draft.content.startswith("w0 ")
        assert draft.content.endswith("c999")
        assert "w1199" in llm.prompts[1]

    @pytest.mark.asyncio
    async def test_small_shortfall_is_not_continued(self, outline):
        """Should skip the continuation when fewer than 300 words are missing."""
        llm = FakeLLM([prose(500)])
        draft = await ChapterWriter(llm).write_chapter(outline, "ctx", target_words=750)
        assert len(llm.calls) == 1
        assert draft.word_count == 500

    @pytest.mark.asyncio
    async def test_failed_continuation_keeps_first_part(self, outline):
        """Should keep the short draft when the continuation call fails."""
        llm = FakeLLM([prose(1200), ProviderError("down")])
        draft = await ChapterWriter(llm).write_chapter(outline, "ctx", target_words=2800)
        assert draft.word_count == 1200
        assert not draft.continued

    @pytest.mark.asyncio
    async def test_strips_markdown(self, outline):
        """Should remove headings and bold markers from the prose."""
        llm = FakeLLM(["# Chapter 12\n\n**Smoke** rose. " + prose(2000)])
        draft = await ChapterWriter(llm).write_chapter(outline, "ctx", target_words=2800)
        assert "#" not in draft.content
        assert "**" not in draft.content
