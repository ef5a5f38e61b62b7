"""Tests for the critic's hard rules and its fail-closed behaviour."""

import pytest

from serialist.agents.critic import ChapterCritic, enforce, fail_closed_report
from serialist.models import ChapterOutline, CriticIssue, CriticReport, IssueType, Severity
from tests.fakes import FakeLLM

HOOKED = "Rain fell on the sect. " * 60 + "Then a voice called his name from the dark?"
GOOD_REVIEW = {
    "overall_score": 8,
    "dopamine_score": 7,
    "pacing_score": 7,
    "ending_hook_score": 8,
    "issues": [],
    "approved": True,
    "requires_rewrite": False,
    "rewrite_instructions": "",
}


def _report(score: float = 8.0, **kwargs) -> CriticReport:
    return CriticReport(overall_score=score, approved=True, **kwargs)


class TestEnforce:
    """Tests for enforce."""

    def test_approves_when_thresholds_met(self):
        """Should approve a good score at 75% of target words."""
        final = enforce(_report(), [], word_count=750, target_words=1000, min_score=6)
        assert final.approved
        assert not final.requires_rewrite

    def test_blocking_continuity_forces_rewrite_and_caps_score(self):
        """Should reject, force a rewrite and cap the score on a critical continuity finding."""
        finding = CriticIssue(
            type=IssueType.CONTINUITY, severity=Severity.CRITICAL, description="Elder Mo is dead"
        )
        final = enforce(_report(9.5), [finding], word_count=1000, target_words=1000, min_score=6)
        assert not final.approved
        assert final.requires_rewrite
        assert final.overall_score <= 3
        assert "Elder Mo" in final.rewrite_instructions

    def test_major_continuity_from_model_also_caps(self):
        """Should treat a model-reported major continuity issue as blocking."""
        report = _report(
            8, issues=[CriticIssue(type=IssueType.CONTINUITY, severity=Severity.MAJOR, description="x")]
        )
        final = enforce(report, [], word_count=1000, target_words=1000, min_score=6)
        assert final.requires_rewrite
        assert final.overall_score == 3

    def test_any_critical_finding_forces_rewrite(self):
        """Should force a rewrite for a critical repetition finding."""
        finding = CriticIssue(type=IssueType.REPETITION, severity=Severity.CRITICAL, description="smirk")
        final = enforce(_report(), [finding], word_count=1000, target_words=1000, min_score=6)
        assert final.requires_rewrite
        assert not final.approved

    def test_far_too_short_forces_rewrite(self):
        """Should force a rewrite and add a word-count issue under 60% of target."""
        final = enforce(_report(), [], word_count=500, target_words=1000, min_score=6)
        assert final.requires_rewrite
        assert any(i.type == IssueType.WORD_COUNT for i in final.issues)

    def test_short_but_not_too_short_is_revised(self):
        """Should reject without a rewrite between 60% and 70% of target."""
        final = enforce(_report(), [], word_count=650, target_words=1000, min_score=6)
        assert not final.approved
        assert not final.requires_rewrite

    def test_low_score_is_not_approved_even_if_model_approved(self):
        """Should ignore the model's own approval when the score is under the minimum."""
        final = enforce(_report(5), [], word_count=1000, target_words=1000, min_score=6)
        assert not final.approved

    def test_fail_closed_report_never_approves(self):
        """Should never approve the fail-closed report, even with a lenient minimum."""
        final = enforce(fail_closed_report(1.0), [], word_count=1000, target_words=1000, min_score=1)
        assert not final.approved


class TestChapterCritic:
    """Tests for ChapterCritic.review."""

    @pytest.fixture
    def outline(self) -> ChapterOutline:
        return ChapterOutline(chapter_number=7, title="Rain", cliffhanger="A voice calls")

    @pytest.mark.asyncio
    async def test_approves_clean_chapter(self, outline):
        """Should approve when the model approves and no check fires."""
        critic = ChapterCritic(FakeLLM([GOOD_REVIEW]), min_score=6)
        report = await critic.review(outline, HOOKED, target_words=400)
        assert report.approved

    @pytest.mark.asyncio
    async def test_unparsable_review_fails_closed(self, outline):
        """Should fail closed when the model never returns JSON."""
        critic = ChapterCritic(FakeLLM(["I liked it!", "Still not JSON."]), min_score=6)
        report = await critic.review(outline, HOOKED, target_words=400)
        assert not report.approved
        assert any(i.type == IssueType.CRITIC_ERROR for i in report.issues)

    @pytest.mark.asyncio
    async def test_provider_error_fails_closed(self, outline):
        """Should fail closed when the provider call raises."""
        critic = ChapterCritic(FakeLLM([ValueError("bad request")]), min_score=6)
        report = await critic.review(outline, HOOKED, target_words=400)
        assert not report.approved

    @pytest.mark.asyncio
    async def test_dead_character_overrides_model_approval(self, outline):
        """Should force a rewrite when a dead character acts, whatever the model said."""
        content = "Elder Mo raised his hand and spoke. " + HOOKED
        critic = ChapterCritic(FakeLLM([GOOD_REVIEW]), min_score=6)
        report = await critic.review(
            outline, content, target_words=400, dead_characters=["Elder Mo"]
        )
        assert report.requires_rewrite
        assert report.overall_score <= 3
