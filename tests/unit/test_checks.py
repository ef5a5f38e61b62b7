"""Tests for the deterministic prose checks."""

import random

import pytest

from serialist.agents.checks import (
    dead_character_issues,
    hook_issues,
    repetition_issues,
    run_checks,
)
from serialist.models import IssueType, Severity

CALM_ENDING = "They ate their supper and went to bed. The night was calm and warm."
ROSTER = ["Elder Mo", "Fat Bao", "Su Ling", "Iron Wu", "Lady Qing", "Old Hu"]
PRESENT_LINES = [
    "{name} stepped into the hall.",
    "{name} drew a blade and laughed.",
    "The guards bowed as {name} passed.",
    "{name} poured the tea without a word.",
]
FLASHBACK_LINES = [
    "Lin Wei remembered how {name} laughed.",
    "Years ago, {name} had walked this road.",
    "{name} used to sweep this courtyard.",
    "Incense burned at the tomb of {name}.",
]


class TestRepetition:
    """Tests for the phrase-group repetition scan."""

    def test_below_threshold_is_clean(self):
        """Should not flag a group used four times."""
        content = " ".join(["He smirked."] * 4)
        assert repetition_issues(content) == []

    def test_five_uses_is_moderate(self):
        """Should flag five uses of one group as moderate."""
        content = " ".join(["Her eyes narrowed.", "He narrowed his eyes."] * 2 + ["Eyes narrowed again."])
        issues = repetition_issues(content)
        assert len(issues) == 1
        assert issues[0].type == IssueType.REPETITION
        assert issues[0].severity == Severity.MODERATE

    def test_eight_uses_is_critical(self):
        """Should flag eight uses of one group as critical."""
        content = " ".join(["He smirked."] * 8)
        issues = repetition_issues(content)
        assert issues[0].severity == Severity.CRITICAL
        assert "smirk" in issues[0].description


class TestDeadCharacters:
    """Tests for the dead-character reappearance scan."""

    def test_flags_dead_character_in_present(self):
        """Should flag a dead character acting in the present as critical continuity."""
        content = "The hall was quiet. Elder Mo stepped through the door and bowed."
        issues = dead_character_issues(content, ["Elder Mo"])
        assert len(issues) == 1
        assert issues[0].type == IssueType.CONTINUITY
        assert issues[0].severity == Severity.CRITICAL

    def test_allows_flashback_mentions(self):
        """Should allow a dead character inside a memory sentence."""
        content = "Lin Wei remembered how Elder Mo laughed. He stood at the tomb of Elder Mo."
        assert dead_character_issues(content, ["Elder Mo"]) == []

    def test_matches_whole_words_only(self):
        """Should not match a name inside a longer word."""
        content = "Moira walked along the river."
        assert dead_character_issues(content, ["Mo"]) == []

    @pytest.mark.parametrize("seed", range(25))
    def test_flags_exactly_the_dead_seen_in_the_present(self, seed):
        """Should flag a dead name only when some sentence shows it outside a memory."""
        rng = random.Random(seed)
        roster = rng.sample(ROSTER, rng.randint(2, len(ROSTER)))
        dead = set(rng.sample(roster, rng.randint(1, len(roster) - 1)))
        sentences = []
        expected = set()
        for name in roster:
            for _ in range(rng.randint(1, 3)):
                if name in dead and rng.random() < 0.6:
                    sentences.append(rng.choice(FLASHBACK_LINES).format(name=name))
                else:
                    sentences.append(rng.choice(PRESENT_LINES).format(name=name))
                    if name in dead:
                        expected.add(name)
        rng.shuffle(sentences)

        issues = dead_character_issues(" ".join(sentences), sorted(dead))

        flagged = {name for name in dead if any(i.description.startswith(f"{name} is dead") for i in issues)}
        assert flagged == expected
        assert len(issues) == len(expected)


class TestHook:
    """Tests for the closing-hook scan."""

    def test_flags_flat_ending(self):
        """Should flag an ending with no hook signal."""
        issues = hook_issues("A long day. " * 10 + CALM_ENDING)
        assert [i.type for i in issues] == [IssueType.HOOK]

    def test_accepts_question_ending(self):
        """Should accept an ending that closes on a question."""
        assert hook_issues(CALM_ENDING + " But who had opened the gate?") == []

    def test_common_words_are_not_hooks(self):
        """Should flag a flat ending even when it mentions shadows or someone."""
        ending = "The shadow of the pagoda fell over the yard. Something in the kitchen smelled of ginger."
        assert [i.type for i in hook_issues(CALM_ENDING + " " + ending)] == [IssueType.HOOK]

    def test_only_closing_sentences_count(self):
        """Should ignore a question asked well before the ending."""
        content = "Who had opened the gate? " + CALM_ENDING
        assert [i.type for i in hook_issues(content)] == [IssueType.HOOK]

    def test_accepts_threat_construction(self):
        """Should accept an ending that closes on an approaching threat."""
        assert hook_issues(CALM_ENDING + " Then footsteps sounded on the roof tiles.") == []

    def test_terminal_arc_skips_hook(self):
        """Should not demand a hook in the final arc."""
        assert hook_issues(CALM_ENDING, terminal=True) == []

    def test_run_checks_combines(self):
        """Should merge every check's findings."""
        content = " ".join(["He smirked."] * 8) + " Elder Mo bowed. " + CALM_ENDING
        types = {i.type for i in run_checks(content, dead=["Elder Mo"])}
        assert types == {IssueType.REPETITION, IssueType.CONTINUITY, IssueType.HOOK}
