# src/duet/schemas/quiz.py
"""Compatibility quiz Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class QuizConsentUpdate(BaseModel):
    """Schema for answering the quiz consent request."""

    consent: bool


class QuizConsentResponse(BaseModel):
    """Consent state as seen by the caller."""

    user_consent: bool | None = None
    other_user_consent: bool | None = None
    asked_at: datetime | None = None
    both_consented: bool = False


class QuizSubmit(BaseModel):
    """Schema for submitting quiz answers."""

    answers: dict[str, Any] = Field(..., min_length=1)
    score: float = Field(..., ge=0, le=100)


class QuizSubmitResponse(BaseModel):
    """Result of a quiz submission."""

    score: float
    compatibility_score: int | None = None
    answers_exchanged: bool = False
