"""Session state machine for one player's quiz.

The machine is driven by explicit commands (start, submit, input, tick,
timeout, leaderboard, home). Timers are owned here and run on an injected
Scheduler so tests can drive them with a virtual clock.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from .config import GameSettings
from .identity import Identity
from .logging_utils import get_logger
from .questions import QUESTION_BANK, QuestionRecord, normalize_answer, select_round
from .timer import CountdownTimer, Scheduler, TimerHandle

logger = get_logger("chosung.session")

TIMEOUT_MARKER = "시간 초과"


class Phase(str, enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    ROUND_FEEDBACK = "round_feedback"
    FINISHED = "finished"
    VIEWING_LEADERBOARD = "viewing_leaderboard"


@dataclass(frozen=True)
class Feedback:
    kind: str  # "correct" or "wrong"
    text: str
    points: int = 0


@dataclass(frozen=True)
class RevealState:
    wrong_input_text: str
    correct_answer_text: str
    timed_out: bool = False


@dataclass
class SessionState:
    phase: Phase = Phase.IDLE
    questions: List[QuestionRecord] = field(default_factory=list)
    current_index: int = 0
    score: int = 0
    time_remaining: int = 0
    feedback: Optional[Feedback] = None
    reveal: Optional[RevealState] = None
    input_text: str = ""

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None


class SessionEndHandler(Protocol):
    def on_session_end(self, final_score: int, previous_high_score: int) -> Any: ...


class SessionMachine:
    def __init__(
        self,
        identity: Identity,
        scheduler: Scheduler,
        ledger: SessionEndHandler,
        settings: Optional[GameSettings] = None,
        bank=QUESTION_BANK,
        high_score: int = 0,
        rng: Optional[random.Random] = None,
        on_change: Optional[Callable[["SessionMachine"], None]] = None,
    ):
        self.identity = identity
        self.settings = settings or GameSettings()
        self.state = SessionState(time_remaining=self.settings.timer_start)
        self.high_score = high_score
        self.previous_high_score = high_score
        self.is_new_high_score = False
        self.on_change = on_change
        self._scheduler = scheduler
        self._ledger = ledger
        self._bank = bank
        self._rng = rng or random.Random()
        self._timer = CountdownTimer(scheduler, self.tick)
        self._pending: Optional[TimerHandle] = None
        self._commands: Dict[str, Callable[..., bool]] = {
            "start": self.start,
            "submit": self.submit_answer,
            "input": self.set_input,
            "tick": self.tick,
            "timeout": self.on_timeout,
            "leaderboard": self.show_leaderboard,
            "home": self.return_to_idle,
        }

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def timer_armed(self) -> bool:
        return self._timer.armed

    @property
    def feedback_active(self) -> bool:
        return self.state.feedback is not None

    @property
    def can_submit(self) -> bool:
        return (
            self.state.phase is Phase.PLAYING
            and not self.feedback_active
            and bool(self.state.input_text.strip())
        )

    def handle(self, command: str, **payload) -> bool:
        """Dispatch a named command; unknown names raise ValueError."""
        try:
            method = self._commands[command]
        except KeyError:
            raise ValueError(f"unknown command: {command}")
        return method(**payload)

    # -- commands -----------------------------------------------------------

    def start(self) -> bool:
        if not self.identity.is_ready:
            logger.info("start_rejected_not_ready", extra={"user_id": self.identity.id})
            return False
        if self.state.phase not in (Phase.IDLE, Phase.FINISHED):
            return False
        questions = select_round(self._bank, self.settings.round_size, self._rng)
        self._cancel_pending()
        self._timer.disarm()
        self.state = SessionState(
            phase=Phase.PLAYING,
            questions=questions,
            time_remaining=self.settings.timer_start,
        )
        self.previous_high_score = self.high_score
        self.is_new_high_score = False
        self._timer.arm()
        logger.info("session_started", extra={"user_id": self.identity.id, "questions": len(questions)})
        self._changed()
        return True

    def set_input(self, text: str = "") -> bool:
        if self.state.phase is not Phase.PLAYING or self.feedback_active:
            return False
        self.state.input_text = text or ""
        self._changed()
        return True

    def submit_answer(self, raw: Optional[str] = None) -> bool:
        st = self.state
        if st.phase is not Phase.PLAYING or self.feedback_active:
            return False
        question = st.current_question
        if question is None:
            return False
        raw = st.input_text if raw is None else raw
        if not (raw or "").strip():
            return False
        st.input_text = ""
        self._timer.disarm()

        if normalize_answer(raw) == normalize_answer(question.answer):
            points = self.settings.base_points + st.time_remaining
            st.score += points
            st.feedback = Feedback("correct", f"정답! (+{points}점)", points)
            st.phase = Phase.ROUND_FEEDBACK
            logger.debug("answer_correct", extra={"user_id": self.identity.id, "points": points, "score": st.score})
            self._pending = self._scheduler.call_later(self.settings.correct_delay, self._finish_feedback)
        else:
            self._begin_reveal(raw.strip(), question, "오답!")
            logger.debug("answer_wrong", extra={"user_id": self.identity.id, "score": st.score})
        self._changed()
        return True

    def tick(self) -> bool:
        st = self.state
        if st.phase is not Phase.PLAYING or self.feedback_active or st.time_remaining <= 0:
            self._timer.disarm()
            return False
        st.time_remaining -= 1
        if st.time_remaining == 0:
            self._timer.disarm()
            if self.on_timeout():
                return True
        self._changed()
        return True

    def on_timeout(self) -> bool:
        st = self.state
        if st.phase is not Phase.PLAYING or st.time_remaining != 0 or self.feedback_active:
            return False
        question = st.current_question
        if question is None:
            return False
        self._timer.disarm()
        self._begin_reveal(TIMEOUT_MARKER, question, "시간 초과!", timed_out=True)
        logger.debug("question_timed_out", extra={"user_id": self.identity.id, "question": st.current_index})
        self._changed()
        return True

    def show_leaderboard(self) -> bool:
        if self.state.phase not in (Phase.IDLE, Phase.FINISHED):
            return False
        self.state.phase = Phase.VIEWING_LEADERBOARD
        self._changed()
        return True

    def return_to_idle(self) -> bool:
        if self.state.phase not in (Phase.FINISHED, Phase.VIEWING_LEADERBOARD):
            return False
        self.state.phase = Phase.IDLE
        self._changed()
        return True

    def shutdown(self) -> None:
        """Cancel every pending timer; used when the player context is torn down."""
        self._cancel_pending()
        self._timer.disarm()

    # -- internals ----------------------------------------------------------

    def _begin_reveal(self, wrong_text: str, question: QuestionRecord, text: str,
                      timed_out: bool = False) -> None:
        st = self.state
        st.reveal = RevealState(wrong_text, question.answer, timed_out)
        st.feedback = Feedback("wrong", text)
        st.phase = Phase.ROUND_FEEDBACK
        self._pending = self._scheduler.call_later(self.settings.wrong_delay, self._finish_feedback)

    def _finish_feedback(self) -> None:
        self._pending = None
        st = self.state
        if st.phase is not Phase.ROUND_FEEDBACK:
            return
        st.feedback = None
        st.reveal = None
        st.phase = Phase.PLAYING
        self._advance()

    def _advance(self) -> None:
        st = self.state
        st.current_index += 1
        st.input_text = ""
        if st.current_index < len(st.questions):
            st.time_remaining = self.settings.timer_start
            self._timer.arm()
            self._changed()
            return
        st.current_index = len(st.questions) - 1
        self._timer.disarm()
        st.phase = Phase.FINISHED
        self._end_session()
        self._changed()

    def _end_session(self) -> None:
        score = self.state.score
        previous = self.high_score
        self.previous_high_score = previous
        result = self._ledger.on_session_end(score, previous)
        self.high_score = result.new_high_score
        self.is_new_high_score = result.improved
        logger.info(
            "session_finished",
            extra={"user_id": self.identity.id, "score": score, "high_score": self.high_score},
        )

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self)
        except Exception as exc:
            logger.warning("session_listener_failed", extra={"error": str(exc)})

    def snapshot(self) -> Dict[str, Any]:
        st = self.state
        q = st.current_question if st.phase in (Phase.PLAYING, Phase.ROUND_FEEDBACK) else None
        total = len(st.questions)
        return {
            "phase": st.phase.value,
            "question_number": st.current_index + 1 if total else 0,
            "total_questions": total or self.settings.round_size,
            "progress": round(st.current_index / total * 100, 2) if total else 0,
            "clue": q.clue if q else None,
            "category": q.category if q else None,
            "time_remaining": st.time_remaining,
            "score": st.score,
            "high_score": self.high_score,
            "previous_high_score": self.previous_high_score,
            "is_new_high_score": self.is_new_high_score,
            "feedback": (
                {"kind": st.feedback.kind, "text": st.feedback.text, "points": st.feedback.points}
                if st.feedback else None
            ),
            "reveal": (
                {
                    "wrong_input_text": st.reveal.wrong_input_text,
                    "correct_answer_text": st.reveal.correct_answer_text,
                    "timed_out": st.reveal.timed_out,
                }
                if st.reveal else None
            ),
            "input_text": st.input_text,
            "can_submit": self.can_submit,
        }
