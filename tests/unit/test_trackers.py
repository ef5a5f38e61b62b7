"""Tests for the memory trackers."""

import pytest

from serialist.core.logs import EventType, get_event_logger
from serialist.memory import (
    CharacterArcTracker,
    CommittedChapter,
    ConsistencyChecker,
    ForeshadowingLedger,
    PacingDirector,
    PowerLedger,
    VoiceTracker,
    WorldRuleIndex,
    WorldTracker,
)
from serialist.memory.consistency import due as consistency_due
from serialist.memory.foreshadowing import advance_lifecycle
from serialist.memory.pacing import clean_blueprint, climax_streaks
from serialist.memory.power import PowerUpdate, merge_update, should_update as power_due, unpaid_gains
from serialist.memory.voice import detect_drift, measure, should_update as voice_due
from serialist.memory.world_rules import extract_rules, rank_rules
from serialist.models import (
    ChapterMood,
    ChapterPacing,
    ForeshadowingHint,
    HintStatus,
    PacingBlueprint,
    PowerState,
    RuleCategory,
    VoiceFingerprint,
)
from tests.fakes import FakeLLM


def _hint(plant: int, payoff: int, status: str = "planned") -> ForeshadowingHint:
    return ForeshadowingHint(
        hint_id=f"h{plant}-{payoff}", hint_text="a cracked jade seal", plant_chapter=plant,
        payoff_chapter=payoff, status=status,
    )  # fmt: skip


class TestForeshadowingLifecycle:
    """Tests for advance_lifecycle."""

    def test_planned_becomes_planted_in_window(self):
        """Should plant a hint when the chapter lands within two chapters after its plant point."""
        assert advance_lifecycle(_hint(10, 30), 10) == HintStatus.PLANTED
        assert advance_lifecycle(_hint(10, 30), 12) == HintStatus.PLANTED
        assert advance_lifecycle(_hint(10, 30), 9) == HintStatus.PLANNED

    def test_planted_is_paid_off_in_window(self):
        """Should pay off a planted hint within five chapters after its payoff point."""
        assert advance_lifecycle(_hint(10, 30, "planted"), 33) == HintStatus.PAID_OFF
        assert advance_lifecycle(_hint(10, 30, "planted"), 29) == HintStatus.PLANTED

    def test_missed_plant_is_abandoned(self):
        """Should abandon a planned hint more than ten chapters past its plant point."""
        assert advance_lifecycle(_hint(3, 30), 13) == HintStatus.PLANNED
        assert advance_lifecycle(_hint(3, 30), 14) == HintStatus.ABANDONED

    def test_missed_payoff_is_abandoned(self):
        """Should abandon a planted hint more than twenty chapters past its payoff."""
        assert advance_lifecycle(_hint(10, 30, "planted"), 50) == HintStatus.PLANTED
        assert advance_lifecycle(_hint(10, 30, "planted"), 51) == HintStatus.ABANDONED

    def test_paid_off_is_terminal(self):
        """Should never move a paid-off hint."""
        assert advance_lifecycle(_hint(10, 30, "paid_off"), 200) == HintStatus.PAID_OFF


class TestForeshadowingLedger:
    """Tests for the ledger's store-backed paths."""

    @pytest.mark.asyncio
    async def test_write_path_moves_and_logs_abandonment(self, store, project):
        """Should persist status changes and log abandoned hints."""
        hints = [_hint(5, 40), _hint(3, 40)]
        await store.insert(
            "foreshadowing_hints",
            [h.model_dump(mode="json") | {"project_id": project.id} for h in hints],
        )
        ledger = ForeshadowingLedger(store)
        await ledger.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=14, title="t", content="x")
        )
        rows = {r["hint_id"]: r["status"] for r in await store.select("foreshadowing_hints")}
        assert rows == {"h5-40": "planned", "h3-40": "abandoned"}
        events = get_event_logger().get_events(event_type=EventType.TRACKER_UPDATE)
        assert any("Abandoned hint" in e.message for e in events)

    @pytest.mark.asyncio
    async def test_plan_arc_clamps_chapters(self, store, project):
        """Should clamp plant chapters into the arc and payoffs to the planned total."""
        llm = FakeLLM(
            [{"hints": [
                {"hint_text": "a whisper in the well", "plant_chapter": 1, "payoff_chapter": 999},
                {"hint_text": "", "plant_chapter": 25, "payoff_chapter": 30},
            ]}]
        )  # fmt: skip
        hints = await ForeshadowingLedger(store, llm).plan_arc(project, 2)
        assert len(hints) == 1
        assert hints[0].plant_chapter == 21
        assert hints[0].payoff_chapter == project.total_planned_chapters
        assert await store.count("foreshadowing_hints", {"arc_number": 2}) == 1

    @pytest.mark.asyncio
    async def test_empty_agenda_is_not_replanned(self, store, project):
        """Should record an empty agenda and skip planning that arc on later chapters."""
        llm = FakeLLM([{"hints": [{"hint_text": "  "}]}])
        ledger = ForeshadowingLedger(store, llm)
        for n in (1, 2, 3):
            await ledger.on_chapter_committed(
                CommittedChapter(project=project, chapter_number=n, title="t", content="x")
            )
        assert len(llm.calls) == 1
        assert await store.count("foreshadowing_hints") == 0
        marker = await store.select_one("arc_agendas", {"tracker": "foreshadowing"})
        assert marker["arc_number"] == 1
        assert marker["item_count"] == 0

    @pytest.mark.asyncio
    async def test_fragment_lists_due_hints(self, store, project):
        """Should list hints to plant now and planted hints due soon."""
        hints = [_hint(20, 60), _hint(5, 30, "planted")]
        await store.insert(
            "foreshadowing_hints",
            [h.model_dump(mode="json") | {"project_id": project.id} for h in hints],
        )
        fragment = await ForeshadowingLedger(store).context_fragment(project, 21)
        assert "FORESHADOWING TO PLANT" in fragment
        assert "TO PAY OFF" not in fragment
        assert "coming due" in fragment.lower()


class TestPowerLedger:
    """Tests for power update gating and merging."""

    def test_update_gating(self):
        """Should update every third chapter or on breakthrough language."""
        assert power_due(9, "quiet day")
        assert not power_due(10, "quiet day")
        assert power_due(10, "At last he broke through to the next realm.")

    def test_merge_replaces_same_chapter_entries(self):
        """Should replace a chapter's ledger entries when it is ingested twice."""
        state = PowerState(realm="Qi Condensation")
        update = PowerUpdate(realm="Foundation", gains=["Foundation realm"], rules=["Qi needs rest"])
        once = merge_update(state, update, 9)
        twice = merge_update(once, update, 9)
        assert twice.realm == "Foundation"
        assert [g.description for g in twice.gains] == ["Foundation realm"]
        assert twice.rules == ["Qi needs rest"]

    def test_unpaid_gains(self):
        """Should report recent gains with no loss in the same chapter."""
        state = merge_update(PowerState(), PowerUpdate(gains=["sword intent"]), 9)
        assert [g.description for g in unpaid_gains(state, 12)] == ["sword intent"]
        paid = merge_update(
            PowerState(), PowerUpdate(gains=["sword intent"], losses=["a cracked meridian"]), 9
        )
        assert unpaid_gains(paid, 12) == []

    @pytest.mark.asyncio
    async def test_skips_off_cycle_chapter(self, store, project):
        """Should not call the analyst on an off-cycle, uneventful chapter."""
        llm = FakeLLM()
        await PowerLedger(store, llm).on_chapter_committed(
            CommittedChapter(project=project, chapter_number=10, title="t", content="quiet day")
        )
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_stores_state_and_warns_on_free_gain(self, store, project):
        """Should persist the merged state and warn when a gain has no cost."""
        llm = FakeLLM([{"realm": "Foundation", "gains": ["Foundation realm"], "losses": []}])
        ledger = PowerLedger(store, llm)
        await ledger.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=9, title="t", content="He trained.")
        )
        state = await ledger.load(project.id)
        assert state.realm == "Foundation"
        events = get_event_logger().get_events(event_type=EventType.TRACKER_UPDATE)
        assert any("without cost" in e.message for e in events)
        fragment = await ledger.context_fragment(project, 10)
        assert "Foundation" in fragment


class TestVoice:
    """Tests for fingerprint scheduling and drift detection."""

    def test_update_schedule(self):
        """Should fingerprint at chapter 5 and every 10 chapters after."""
        assert [c for c in range(1, 40) if voice_due(c)] == [5, 15, 25, 35]

    def test_measure(self):
        """Should measure sentence length, dialogue and inner-thought ratios."""
        avg, dialogue, thought = measure('"Run," she said. He wondered why. The sky was red and low.')
        assert avg == pytest.approx(4.0)
        assert dialogue == pytest.approx(0.333, abs=0.001)
        assert thought == pytest.approx(0.333, abs=0.001)

    def test_no_drift_within_tolerance(self):
        """Should report nothing for small shifts."""
        old = VoiceFingerprint(avg_sentence_length=14, dialogue_ratio=0.4, inner_thought_ratio=0.1)
        new = VoiceFingerprint(avg_sentence_length=16, dialogue_ratio=0.5, inner_thought_ratio=0.15)
        assert detect_drift(old, new) == []

    def test_flags_each_drift_dimension(self):
        """Should flag dialogue, sentence length, thought ratio, register and lost phrases."""
        old = VoiceFingerprint(
            avg_sentence_length=14, dialogue_ratio=0.4, inner_thought_ratio=0.1,
            emotional_register="wry", signature_phrases=["heaven's will", "as expected", "tch"],
        )  # fmt: skip
        new = VoiceFingerprint(
            avg_sentence_length=20, dialogue_ratio=0.2, inner_thought_ratio=0.3,
            emotional_register="solemn", signature_phrases=["tch"],
        )  # fmt: skip
        warnings = " | ".join(detect_drift(old, new))
        for marker in ("Dialogue ratio", "sentence length", "Inner-thought", "register", "Signature"):
            assert marker in warnings

    @pytest.mark.asyncio
    async def test_drift_keeps_reference_and_warns(self, store, project):
        """Should keep the old fingerprint as reference and surface drift warnings."""
        reference = VoiceFingerprint(avg_sentence_length=30, dialogue_ratio=0.9)
        await store.upsert(
            "voice_fingerprints",
            [{"project_id": project.id, "fingerprint": reference.model_dump(mode="json")}],
            conflict=("project_id",),
        )
        for n in (13, 14, 15):
            await store.insert(
                "chapters",
                [{"project_id": project.id, "chapter_number": n, "content": "He walked. It rained."}],
            )
        tracker = VoiceTracker(store)
        await tracker.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=15, title="t", content="x")
        )
        row = await store.select_one("voice_fingerprints", {"project_id": project.id})
        assert row["fingerprint"]["avg_sentence_length"] == 30
        assert row["drift_warnings"]
        fragment = await tracker.context_fragment(project, 16)
        assert "Do not drift further" in fragment


class TestCharacterArcs:
    """Tests for arc generation and appearance counting."""

    @pytest.mark.asyncio
    async def test_generates_arc_for_recurring_character(self, store, project):
        """Should create an arc once a character has three recorded appearances."""
        for n in (1, 2, 3):
            await store.insert(
                "character_states",
                [{"project_id": project.id, "chapter_number": n, "character_name": "Fat Bao"}],
            )
        llm = FakeLLM(
            [{
                "character_name": "Fat Bao",
                "role": "comic sidekick",
                "internal_conflict": "wants respect",
                "phases": [{"phase": "clown", "chapter_range": [1, 30], "traits": "jokes"}],
                "signature_traits": ["eats constantly"],
            }]
        )  # fmt: skip
        tracker = CharacterArcTracker(store, llm)
        await tracker.on_chapter_committed(
            CommittedChapter(
                project=project, chapter_number=3, title="t", content="Fat Bao ate.",
                cast=("Lin Wei", "Fat Bao"),
            )  # fmt: skip
        )
        fragment = await tracker.context_fragment(project, 4, ["Fat Bao"])
        assert "Fat Bao (comic sidekick)" in fragment
        assert "Current phase: clown" in fragment
        row = await store.select_one("character_arcs", {"character_name": "Fat Bao"})
        assert row["appearance_count"] == 3


class TestWorldTracker:
    """Tests for location exploration and the world fragment."""

    @staticmethod
    async def _seed(store, project_id: str) -> None:
        locations = [
            ("Outer Court", 1, 1, True, ["Who cracked the furnace seal?"]),
            ("Ash Valley", 2, 2, False, []),
            ("Sky Capital", 4, 5, False, ["The empty throne"]),
        ]
        await store.insert(
            "location_bibles",
            [
                {
                    "project_id": project_id, "location_name": name, "arc_start": start,
                    "arc_end": end, "explored": explored, "position": position,
                    "bible": {"description": f"{name} description", "mysteries": mysteries},
                }
                for position, (name, start, end, explored, mysteries) in enumerate(locations)
            ],
        )  # fmt: skip

    @pytest.mark.asyncio
    async def test_fragment_forbids_unexplored_locations(self, store, project):
        """Should forbid unexplored places beyond the next arc and allow foreshadowing the next one."""
        await self._seed(store, project.id)
        fragment = await WorldTracker(store).context_fragment(project, 5)
        assert "Current location: Outer Court" in fragment
        assert "MUST NOT MENTION (unexplored): Sky Capital" in fragment
        assert "Coming next arc (may foreshadow only): Ash Valley" in fragment
        assert "Who cracked the furnace seal?" in fragment
        assert "The empty throne" not in fragment

    @pytest.mark.asyncio
    async def test_location_explored_when_its_arc_starts(self, store, project):
        """Should mark a location explored on the first chapter of its arc and log it."""
        await self._seed(store, project.id)
        tracker = WorldTracker(store)
        await tracker.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=21, title="t", content="x")
        )
        explored = {loc.location_name: loc.explored for loc in await tracker.locations(project.id)}
        assert explored == {"Outer Court": True, "Ash Valley": True, "Sky Capital": False}
        events = get_event_logger().get_events(event_type=EventType.TRACKER_UPDATE)
        assert any(e.message == "Location explored: Ash Valley" for e in events)
        fragment = await tracker.context_fragment(project, 21)
        assert "Current location: Ash Valley" in fragment
        assert "MUST NOT MENTION (unexplored): Sky Capital" in fragment

    @pytest.mark.asyncio
    async def test_no_fragment_without_a_map(self, store, project):
        """Should return None when no world map could be planned."""
        tracker = WorldTracker(store)
        await tracker.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=1, title="t", content="x")
        )
        assert await store.count("location_bibles") == 0
        assert await tracker.context_fragment(project, 2) is None


BLUEPRINT = {
    "chapters": [
        {
            "chapter_number": 2, "mood": "climax", "intensity_level": 14,
            "suggested_structure": "Duel, reversal, escape", "cliffhanger_intensity": "extreme",
        },
        {"chapter_number": 1, "mood": "buildup", "intensity_level": "3", "dopamine_required": False},
        {"chapter_number": 1, "mood": "revelation"},
        {"chapter_number": 45, "mood": "climax"},
        {"chapter_number": 3, "mood": "sleepy"},
    ],
    "required_variety": ["villain_focus"],
}  # fmt: skip


class TestPacingDirector:
    """Tests for the per-arc pacing blueprint."""

    def test_clean_blueprint_keeps_one_entry_per_arc_chapter(self):
        """Should drop chapters outside the arc and duplicates, in chapter order."""
        cleaned = clean_blueprint(PacingBlueprint.model_validate(BLUEPRINT), 1, 1, 20)
        assert [(c.chapter_number, c.mood) for c in cleaned.chapters] == [
            (1, ChapterMood.BUILDUP), (2, ChapterMood.CLIMAX), (3, ChapterMood.RISING),
        ]  # fmt: skip
        assert cleaned.chapters[1].intensity_level == 10

    def test_climax_streaks(self):
        """Should report where a consecutive climax run passes three chapters."""
        moods = ["climax"] * 4 + ["aftermath", "climax"]
        blueprint = PacingBlueprint(
            chapters=[ChapterPacing(chapter_number=n, mood=m) for n, m in enumerate(moods, start=1)]
        )
        assert climax_streaks(blueprint) == [4]

    @pytest.mark.asyncio
    async def test_plans_once_and_guides_the_chapter(self, store, project):
        """Should store the blueprint, never replan it, and describe the chapter's mood."""
        llm = FakeLLM([BLUEPRINT])
        director = PacingDirector(store, llm)
        await director.prepare_arc(project, 1)
        await director.prepare_arc(project, 1)
        assert len(llm.calls) == 1

        fragment = await director.context_fragment(project, 2)
        assert "Mood: climax (intensity 10/10)" in fragment
        assert "Structure: Duel, reversal, escape" in fragment
        assert "Ending: End mid-crisis" in fragment
        quiet = await director.context_fragment(project, 1)
        assert "No big payoff needed" in quiet
        assert await director.context_fragment(project, 4) is None

    @pytest.mark.asyncio
    async def test_empty_blueprint_is_kept_as_marker(self, store, project):
        """Should store an empty blueprint so the arc is not planned again."""
        llm = FakeLLM([{"chapters": []}])
        director = PacingDirector(store, llm)
        await director.prepare_arc(project, 2)
        await director.prepare_arc(project, 2)
        assert len(llm.calls) == 1
        assert await director.context_fragment(project, 21) is None

    @pytest.mark.asyncio
    async def test_plans_next_arc_on_last_chapter(self, store, project):
        """Should plan the following arc once its predecessor's last chapter commits."""
        llm = FakeLLM([{"chapters": [{"chapter_number": 21, "mood": "buildup"}]}])
        director = PacingDirector(store, llm)
        await director.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=19, title="t", content="x")
        )
        assert llm.calls == []
        await director.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=20, title="t", content="x")
        )
        assert (await director.load(project.id, 2)).for_chapter(21).mood == ChapterMood.BUILDUP


RULE_PROSE = (
    "Lin Wei bowed to the elder. "
    "The Foundation realm allows a cultivator to fly for an hour. "
    "Azure Cloud Sect lies beyond the Black River. "
    "Sect law forbids Lin Wei from entering the Ninth Furnace. "
    "Legend has it that a dragon sleeps under the volcano. "
    '"The realm requires patience," Fat Bao said.'
)


class TestWorldRuleIndex:
    """Tests for rule extraction, ranking and the rule fragment."""

    def test_extracts_one_rule_per_matching_sentence(self):
        """Should categorize narrated rules and skip dialogue and plain action."""
        rules = extract_rules(RULE_PROSE, 4, cast=("Lin Wei", "Fat Bao"))
        assert [r.category for r in rules] == [
            RuleCategory.POWER_SYSTEM, RuleCategory.GEOGRAPHY,
            RuleCategory.RESTRICTIONS, RuleCategory.HISTORY,
        ]  # fmt: skip
        assert rules[0].tags == ["power_system", "Foundation"]
        assert rules[1].tags == ["geography", "Azure Cloud Sect", "Black River"]
        assert "character=Lin Wei" in rules[2].tags
        assert all(r.introduced_chapter == 4 and r.importance == 60 for r in rules)

    def test_ranks_by_cast_and_brief(self):
        """Should keep only rules tied to the cast or the brief, best first."""
        rules = extract_rules(RULE_PROSE, 4, cast=("Lin Wei",))
        chosen = rank_rules(rules, ["Lin Wei"], "Lin Wei sneaks toward the Ninth Furnace")
        assert [r.category for r in chosen] == [RuleCategory.RESTRICTIONS]
        chosen = rank_rules(rules, [], "the dragon sleeps under the volcano")
        assert [r.category for r in chosen] == [RuleCategory.HISTORY]
        assert rank_rules(rules, [], "") == []

    @pytest.mark.asyncio
    async def test_restated_rules_count_usage(self, store, project):
        """Should store each rule once and count later restatements."""
        index = WorldRuleIndex(store)
        chapter = CommittedChapter(
            project=project, chapter_number=4, title="t", content=RULE_PROSE, cast=("Lin Wei",)
        )
        await index.on_chapter_committed(chapter)
        await index.on_chapter_committed(chapter)
        rows = await store.select("world_rules")
        assert len(rows) == 4
        assert {r["usage_count"] for r in rows} == {1}

    @pytest.mark.asyncio
    async def test_fragment_uses_chapter_brief(self, store, project):
        """Should surface the rules that match the arc plan's brief for the chapter."""
        await store.insert(
            "arc_plans",
            [{
                "project_id": project.id, "arc_number": 1, "start_chapter": 1, "end_chapter": 20,
                "chapter_briefs": [{"chapter_number": 5, "brief": "Lin Wei sneaks toward the Ninth Furnace"}],
            }],
        )  # fmt: skip
        index = WorldRuleIndex(store)
        await index.on_chapter_committed(
            CommittedChapter(project=project, chapter_number=4, title="t", content=RULE_PROSE, cast=("Lin Wei",))
        )
        fragment = await index.context_fragment(project, 5, ["Lin Wei"])
        assert fragment.startswith("=== WORLD RULES IN PLAY ===")
        assert "[restrictions] Sect law forbids Lin Wei" in fragment
        assert "dragon" not in fragment


class TestConsistencyChecker:
    """Tests for the periodic continuity audit."""

    @staticmethod
    async def _kill(store, project_id: str, name: str) -> None:
        await store.insert(
            "character_states",
            [
                {"project_id": project_id, "chapter_number": 1, "character_name": name, "status": "alive"},
                {"project_id": project_id, "chapter_number": 2, "character_name": name, "status": "dead"},
            ],
        )

    def test_runs_every_third_chapter(self):
        """Should audit chapters 3, 6 and 9 only."""
        assert [n for n in range(1, 10) if consistency_due(n)] == [3, 6, 9]

    @pytest.mark.asyncio
    async def test_records_dead_character_and_warns_next_chapter(self, store, project):
        """Should store a critical continuity issue, log it and warn the next chapter."""
        await self._kill(store, project.id, "Elder Mo")
        llm = FakeLLM()
        checker = ConsistencyChecker(store, llm)
        chapter = CommittedChapter(
            project=project, chapter_number=3, title="t", content="Elder Mo walked into the hall and smiled."
        )
        await checker.on_chapter_committed(chapter)
        await checker.on_chapter_committed(chapter)

        rows = await store.select("consistency_issues")
        assert [(r["issue_type"], r["severity"]) for r in rows] == [("continuity", "critical")]
        assert llm.calls == []
        events = get_event_logger().get_events(event_type=EventType.TRACKER_UPDATE)
        assert any("Elder Mo is dead" in e.message for e in events)
        fragment = await checker.context_fragment(project, 4)
        assert "CONTINUITY WARNINGS" in fragment
        assert "ch.3: Elder Mo is dead" in fragment
        assert await checker.context_fragment(project, 12) is None

    @pytest.mark.asyncio
    async def test_skips_off_cycle_chapter(self, store, project):
        """Should leave chapters between audits alone."""
        await self._kill(store, project.id, "Elder Mo")
        await ConsistencyChecker(store).on_chapter_committed(
            CommittedChapter(project=project, chapter_number=4, title="t", content="Elder Mo smiled.")
        )
        assert await store.count("consistency_issues") == 0

    @pytest.mark.asyncio
    async def test_logic_check_for_trade_chapters(self, store, project):
        """Should ask the analyst about chapters that deal in money and keep real findings."""
        llm = FakeLLM(
            [{"issues": [
                {"type": "math", "severity": "minor", "description": "The pill costs ten gold, then forty."},
                {"description": " "},
            ]}]
        )  # fmt: skip
        await ConsistencyChecker(store, llm).on_chapter_committed(
            CommittedChapter(
                project=project, chapter_number=6, title="t",
                content="The merchant paid forty gold coins for a pill priced at ten.",
            )  # fmt: skip
        )
        rows = await store.select("consistency_issues")
        assert [(r["issue_type"], r["severity"]) for r in rows] == [("logic", "minor")]
        assert "forty" in llm.prompts[0]
        fragment = await ConsistencyChecker(store).context_fragment(project, 7)
        assert fragment is None
