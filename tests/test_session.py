import random

import pytest

from chosung.config import GameSettings
from chosung.identity import Identity
from chosung.ledger import LedgerResult, ScoreLedger
from chosung.questions import QuestionRecord
from chosung.session import Phase, SessionMachine, TIMEOUT_MARKER


class FakeLedger:
    def __init__(self):
        self.calls = []

    def on_session_end(self, final_score, previous_high_score):
        self.calls.append((final_score, previous_high_score))
        improved = final_score > previous_high_score
        return LedgerResult(final_score if improved else previous_high_score, improved)


def make_machine(player, scheduler, settings, bank, rng, ledger=None, **kw):
    return SessionMachine(player, scheduler, ledger or FakeLedger(), settings=settings, bank=bank, rng=rng, **kw)


def answer_of(m):
    return m.state.current_question.answer


def test_start_resets_and_arms_timer(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    assert m.phase is Phase.IDLE
    assert m.start() is True
    assert m.phase is Phase.PLAYING
    assert m.state.score == 0
    assert m.state.current_index == 0
    assert m.state.time_remaining == 10
    assert len(m.state.questions) == 2
    assert m.timer_armed


def test_start_gated_until_identity_ready(scheduler, settings, small_bank, rng):
    m = make_machine(Identity(None, False), scheduler, settings, small_bank, rng)
    assert m.start() is False
    assert m.phase is Phase.IDLE
    assert scheduler.pending == 0


def test_example_round_correct_then_timeout(player, scheduler, settings, small_bank, rng):
    ledger = FakeLedger()
    m = make_machine(player, scheduler, settings, small_bank, rng, ledger=ledger)
    m.start()

    assert m.submit_answer(answer_of(m)) is True
    assert m.state.score == 20
    assert m.phase is Phase.ROUND_FEEDBACK
    assert m.state.feedback.kind == "correct"
    assert m.state.feedback.points == 20
    assert not m.timer_armed

    scheduler.advance(0.5)
    assert m.phase is Phase.PLAYING
    assert m.state.current_index == 1
    assert m.state.time_remaining == 10
    assert m.state.feedback is None

    scheduler.advance(10)
    assert m.state.time_remaining == 0
    assert m.phase is Phase.ROUND_FEEDBACK
    assert m.state.score == 20
    assert m.state.reveal.wrong_input_text == TIMEOUT_MARKER
    assert m.state.reveal.timed_out is True
    assert m.state.reveal.correct_answer_text == answer_of(m)
    assert m.state.feedback.kind == "wrong"

    scheduler.advance(1.9)
    assert m.phase is Phase.ROUND_FEEDBACK
    scheduler.advance(0.1)
    assert m.phase is Phase.FINISHED
    assert m.state.reveal is None
    assert ledger.calls == [(20, 0)]
    assert m.high_score == 20
    assert m.is_new_high_score is True
    assert scheduler.pending == 0


def test_wrong_answer_reveals_original_case(player, scheduler, rng):
    bank = (QuestionRecord("ㅅㅂ", "과일", "수박", 1),)
    m = make_machine(player, scheduler, GameSettings(round_size=1), bank, rng)
    m.start()
    assert m.submit_answer("  Watermelon ") is True
    assert m.state.reveal.wrong_input_text == "Watermelon"
    assert m.state.reveal.correct_answer_text == "수박"
    assert m.state.score == 0


def test_typed_timeout_text_is_a_plain_wrong_answer(player, scheduler, rng):
    bank = (QuestionRecord("ㄴㄱ", "장소", "남극", 1),)
    m = make_machine(player, scheduler, GameSettings(round_size=1), bank, rng)
    m.start()
    assert m.submit_answer(TIMEOUT_MARKER) is True
    assert m.state.reveal.wrong_input_text == TIMEOUT_MARKER
    assert m.state.reveal.timed_out is False
    assert m.snapshot()["reveal"]["timed_out"] is False
    assert m.state.feedback.text == "오답!"


def test_korean_answer_matches(player, scheduler, rng):
    bank = (QuestionRecord("ㅅㅂ", "과일", "수박", 1),)
    m = make_machine(player, scheduler, GameSettings(round_size=1), bank, rng)
    m.start()
    m.submit_answer("수박")
    assert m.state.feedback.kind == "correct"


def test_normalized_match_ignores_case_and_spaces(player, scheduler, rng):
    bank = (QuestionRecord("ㅇㄷ", "word", "answer", 1),)
    m = make_machine(player, scheduler, GameSettings(round_size=1), bank, rng)
    m.start()
    m.submit_answer("  ANSWER  ")
    assert m.state.feedback.kind == "correct"


def test_points_are_base_plus_remaining_seconds(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    scheduler.advance(3)
    assert m.state.time_remaining == 7
    m.submit_answer(answer_of(m))
    assert m.state.score == 17


def test_feedback_blocks_further_submissions(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    m.submit_answer("definitely wrong")
    reveal = m.state.reveal
    assert m.submit_answer(answer_of(m)) is False
    assert m.state.score == 0
    assert m.state.reveal == reveal
    assert m.set_input("x") is False


def test_no_timeout_while_feedback_active(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    scheduler.advance(9)
    m.submit_answer(answer_of(m))
    assert m.state.score == 11
    # the countdown stays frozen at 1 through the feedback window
    assert m.tick() is False
    assert m.on_timeout() is False
    assert m.state.time_remaining == 1


def test_finished_only_after_last_question(player, scheduler, settings, small_bank, rng):
    ledger = FakeLedger()
    m = make_machine(player, scheduler, settings, small_bank, rng, ledger=ledger)
    m.start()
    m.submit_answer("nope")
    scheduler.advance(2)
    assert m.phase is Phase.PLAYING
    assert ledger.calls == []
    m.submit_answer("nope")
    scheduler.advance(2)
    assert m.phase is Phase.FINISHED
    assert ledger.calls == [(0, 0)]
    assert m.is_new_high_score is False


def test_blank_submission_is_ignored(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    assert m.submit_answer("   ") is False
    assert m.phase is Phase.PLAYING


def test_input_buffer_drives_submit(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    assert m.can_submit is False
    m.set_input(answer_of(m))
    assert m.can_submit is True
    assert m.submit_answer() is True
    assert m.state.input_text == ""
    assert m.state.feedback.kind == "correct"


def test_invalid_phase_calls_are_noops(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    assert m.submit_answer("수박") is False
    assert m.on_timeout() is False
    assert m.return_to_idle() is False
    m.start()
    assert m.start() is False
    assert m.on_timeout() is False
    assert m.show_leaderboard() is False


def test_side_views(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    assert m.show_leaderboard() is True
    assert m.phase is Phase.VIEWING_LEADERBOARD
    assert m.start() is False
    assert m.return_to_idle() is True
    assert m.phase is Phase.IDLE


def test_restart_from_finished_starts_clean(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    m.submit_answer(answer_of(m))
    scheduler.advance(0.5)
    m.submit_answer(answer_of(m))
    scheduler.advance(0.5)
    assert m.phase is Phase.FINISHED
    assert m.state.score == 40

    assert m.start() is True
    assert m.state.score == 0
    assert m.is_new_high_score is False
    assert m.previous_high_score == 40
    assert scheduler.pending == 1


def test_shutdown_cancels_timers(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    m.start()
    m.submit_answer("wrong")
    m.shutdown()
    assert scheduler.pending == 0
    scheduler.advance(10)
    assert m.phase is Phase.ROUND_FEEDBACK


def test_handle_dispatches_commands(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    assert m.handle("start") is True
    assert m.handle("input", text="abc") is True
    assert m.handle("submit") is True
    with pytest.raises(ValueError):
        m.handle("explode")


def test_on_change_listener_sees_every_transition(player, scheduler, settings, small_bank, rng):
    seen = []
    m = make_machine(player, scheduler, settings, small_bank, rng, on_change=lambda mm: seen.append(mm.phase))
    m.start()
    m.submit_answer("wrong")
    scheduler.advance(2)
    assert seen[:3] == [Phase.PLAYING, Phase.ROUND_FEEDBACK, Phase.PLAYING]


def test_listener_errors_do_not_break_machine(player, scheduler, settings, small_bank, rng):
    def boom(_):
        raise RuntimeError("render failed")

    m = make_machine(player, scheduler, settings, small_bank, rng, on_change=boom)
    assert m.start() is True
    assert m.phase is Phase.PLAYING


def test_score_never_decreases(player, scheduler, rng):
    from chosung.questions import QUESTION_BANK

    m = make_machine(player, scheduler, GameSettings(round_size=10), QUESTION_BANK, rng)
    m.start()
    chooser = random.Random(99)
    last = 0
    while m.phase is not Phase.FINISHED:
        action = chooser.choice(["right", "wrong", "wait"])
        if m.phase is Phase.PLAYING:
            if action == "right":
                m.submit_answer(answer_of(m))
            elif action == "wrong":
                m.submit_answer("오답입니다")
        scheduler.advance(chooser.choice([0.5, 1, 3]))
        assert m.state.score >= last
        last = m.state.score


def test_snapshot_shapes(player, scheduler, settings, small_bank, rng):
    m = make_machine(player, scheduler, settings, small_bank, rng)
    snap = m.snapshot()
    assert snap["phase"] == "idle"
    assert snap["clue"] is None
    m.start()
    m.submit_answer("wrong")
    snap = m.snapshot()
    assert snap["phase"] == "round_feedback"
    assert snap["clue"] == m.state.current_question.clue
    assert snap["reveal"]["timed_out"] is False
    assert snap["can_submit"] is False


def test_session_end_persists_through_real_ledger(store, scheduler, settings, small_bank, rng):
    store.ensure_profile("real-player")
    ledger = ScoreLedger(store, "real-player")
    m = SessionMachine(Identity("real-player", True), scheduler, ledger, settings=settings, bank=small_bank, rng=rng)
    m.start()
    m.submit_answer(answer_of(m))
    scheduler.advance(0.5)
    m.submit_answer("wrong")
    scheduler.advance(2)
    assert m.phase is Phase.FINISHED
    assert store.read_profile("real-player").high_score == 20
