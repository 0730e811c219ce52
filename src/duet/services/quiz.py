"""Compatibility quiz synchronization between the two chat participants.

Every transition runs through :func:`apply_chat_change` under the chat lock.
The mutation decides which events the write caused; they are queued for
publication only after the commit, which is what keeps ``quiz:start``,
``quiz:consent-request`` and ``quiz:answers-exchanged`` single-fire.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from duet.core.errors import InvalidStateError, NotFoundError, ValidationError
from duet.core.settings import settings
from duet.db.time import utcnow
from duet.models import Chat, ChatParticipant
from duet.services.chats import INACTIVE_SEND_DENIED, require_participant
from duet.services.consistency import apply_chat_change, chat_locks
from duet.services.directory import UserSummary, get_user_summaries
from duet.services.fanout import FanOut
from duet.services.realtime import chat_room, user_room

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100


def compatibility_score(first: float, second: float) -> int:
    """Average two quiz scores, rounding halves up."""
    return math.floor((first + second) / 2 + 0.5)


def both_consented(chat: Chat) -> bool:
    return len(chat.participants) == 2 and all(
        participant.quiz_consent is True for participant in chat.participants
    )


def consent_request_due(chat: Chat, total_messages: int) -> bool:
    """Return True if a send that brought the chat to ``total_messages`` should ask for consent."""
    if not settings.quiz_trigger_min <= total_messages <= settings.quiz_trigger_max:
        return False
    if chat.consent_asked_at is not None:
        return False
    return all(participant.quiz_consent is None for participant in chat.participants)


def mark_consent_requested(chat: Chat) -> bool:
    """Stamp the consent request if it has not been asked yet. Returns True when stamped."""
    if chat.consent_asked_at is not None:
        return False
    chat.consent_asked_at = utcnow()
    return True


def mark_quiz_started(chat: Chat) -> bool:
    """Stamp the quiz start once both participants consent. Returns True when stamped."""
    if chat.quiz_started_at is not None or not both_consented(chat):
        return False
    chat.quiz_started_at = utcnow()
    return True


@dataclass(frozen=True)
class ConsentView:
    user_consent: bool | None
    other_user_consent: bool | None
    asked_at: datetime | None
    both_consented: bool


@dataclass
class ConsentOutcome:
    view: ConsentView
    other_user_id: str | None
    started: bool


@dataclass
class SubmitOutcome:
    score: float
    compatibility_score: int | None
    other_user_id: str | None
    exchanged: bool
    completed_at: datetime | None = None
    exchange: dict[str, Any] = field(default_factory=dict)


def consent_view(chat: Chat, user_id: str) -> ConsentView:
    mine = require_participant(chat, user_id)
    other = chat.other_participant(user_id)
    return ConsentView(
        user_consent=mine.quiz_consent,
        other_user_consent=other.quiz_consent if other else None,
        asked_at=chat.consent_asked_at,
        both_consented=both_consented(chat),
    )


def _participant_entry(participant: ChatParticipant, summaries: dict[str, UserSummary]) -> dict[str, Any]:
    summary = summaries.get(participant.user_id)
    return {
        "userId": participant.user_id,
        "userName": summary.name if summary else None,
        "answers": participant.quiz_answers,
        "score": participant.quiz_score,
        "completedAt": participant.quiz_completed_at,
    }


class QuizService:
    """Consent handshake, score submission and the one-shot answer exchange."""

    def __init__(self, db: Session, fanout: FanOut) -> None:
        self.db = db
        self.fanout = fanout

    def get_consent(self, user_id: str, chat_id: str) -> ConsentView:
        chat = self.db.get(Chat, chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        return consent_view(chat, user_id)

    async def set_consent(self, caller: UserSummary, chat_id: str, consent: bool) -> ConsentView:
        """Store the caller's consent and announce it.

        ``quiz:start`` goes to the chat room once per chat, on the first write
        that leaves both participants consenting. Withdrawing and giving
        consent again does not restart the quiz.
        """

        def mutate(chat: Chat) -> ConsentOutcome:
            mine = require_participant(chat, caller.id)
            if not chat.is_active:
                raise InvalidStateError(INACTIVE_SEND_DENIED)
            mine.quiz_consent = consent
            mark_consent_requested(chat)
            started = mark_quiz_started(chat)
            other = chat.other_participant(caller.id)
            return ConsentOutcome(
                view=consent_view(chat, caller.id),
                other_user_id=other.user_id if other else None,
                started=started,
            )

        async with chat_locks.hold(chat_id):
            _, outcome = apply_chat_change(self.db, chat_id, mutate)

        if outcome.other_user_id:
            self.fanout.defer_emit(
                user_room(outcome.other_user_id),
                "quiz:consent-update",
                {"chatId": chat_id, "consent": consent, "userId": caller.id},
            )
        if outcome.started:
            logger.info("Both participants consented, starting quiz in chat %s", chat_id)
            self.fanout.defer_emit(chat_room(chat_id), "quiz:start", {"chatId": chat_id})
        return outcome.view

    async def submit(
        self,
        caller: UserSummary,
        chat_id: str,
        answers: dict[str, Any],
        score: float,
    ) -> SubmitOutcome:
        """Record the caller's answers and score.

        Raises:
            ValidationError: If ``score`` is outside 0..100 or ``answers`` is empty.
            InvalidStateError: If the answers were already exchanged.
        """
        if not isinstance(answers, dict) or not answers:
            raise ValidationError("Answers and score are required")
        if (
            isinstance(score, bool)
            or not isinstance(score, (int, float))
            or not MIN_SCORE <= score <= MAX_SCORE
        ):
            raise ValidationError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}")

        def mutate(chat: Chat) -> SubmitOutcome:
            mine = require_participant(chat, caller.id)
            if not chat.is_active:
                raise InvalidStateError(INACTIVE_SEND_DENIED)
            if chat.answers_exchanged_at is not None:
                raise InvalidStateError("Quiz answers were already exchanged")

            now = utcnow()
            mine.quiz_answers = answers
            mine.quiz_score = score
            mine.quiz_completed_at = now

            scores = [participant.quiz_score for participant in chat.participants]
            if len(scores) == 2 and all(value is not None for value in scores):
                chat.compatibility_score = compatibility_score(scores[0], scores[1])

            exchanged = len(chat.participants) == 2 and all(
                participant.quiz_answers is not None for participant in chat.participants
            )
            if exchanged:
                chat.answers_exchanged_at = now

            other = chat.other_participant(caller.id)
            return SubmitOutcome(
                score=score,
                compatibility_score=chat.compatibility_score,
                other_user_id=other.user_id if other else None,
                exchanged=exchanged,
                completed_at=now,
            )

        async with chat_locks.hold(chat_id):
            chat, outcome = apply_chat_change(self.db, chat_id, mutate)

        self.fanout.defer_emit(
            chat_room(chat_id),
            "quiz:score",
            {
                "chatId": chat_id,
                "score": score,
                "userName": caller.name,
                "userId": caller.id,
                "compatibilityScore": outcome.compatibility_score,
            },
        )

        if outcome.exchanged:
            summaries = get_user_summaries(self.db, chat.participant_ids)
            outcome.exchange = {
                "chatId": chat_id,
                "participants": [
                    _participant_entry(participant, summaries)
                    for participant in chat.participants
                ],
                "compatibilityScore": chat.compatibility_score,
                "exchangedAt": chat.answers_exchanged_at,
            }
            logger.info("Quiz answers exchanged in chat %s", chat_id)
            self.fanout.defer_emit(chat_room(chat_id), "quiz:answers-exchanged", outcome.exchange)
        return outcome
