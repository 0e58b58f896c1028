"""Chat-completion client for interviewer turns and final scoring."""

from __future__ import annotations

import json
from typing import Literal, Sequence

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import GenerationError
from .events import log_event

QUESTION_TEMPERATURE = 0.35
QNA_TEMPERATURE = 0.8
SCORING_TEMPERATURE = 0.2


class ConversationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class InterviewScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    technical_score: float = Field(alias="technicalScore", ge=0, le=10)
    communication_score: float = Field(alias="communicationScore", ge=0, le=10)
    justification: str
    completion_status: Literal["complete", "partial", "abrupt", "error"] = Field(alias="completionStatus")

    @classmethod
    def unavailable(cls) -> "InterviewScore":
        return cls(
            technical_score=0,
            communication_score=0,
            justification="Scoring failed due to system error",
            completion_status="error",
        )

    @property
    def available(self) -> bool:
        return self.completion_status != "error"


def interviewer_system_prompt(role: str, job_description: str) -> str:
    return (
        f"You are a senior technical interviewer conducting a short phone screen for the {role} position.\n"
        f"Job description:\n{(job_description or 'Not provided')[:4000]}\n\n"
        "Rules:\n"
        "- Your words are read aloud by a text-to-speech voice, so reply in plain spoken sentences with no lists, "
        "markdown or code.\n"
        "- Ask exactly one question at a time and keep it under three sentences.\n"
        "- Base technical questions on the job description and what the candidate has said so far.\n"
        "- When answering a candidate's question, answer directly and professionally without asking a new question."
    )


def scoring_system_prompt(role: str, job_description: str) -> str:
    return (
        "You are an interview scoring system. Evaluate the candidate based on:\n"
        "- Technical Knowledge (0-10)\n"
        "- Communication Skills (0-10)\n\n"
        "Return your evaluation in this EXACT JSON format:\n"
        '{"technicalScore": number, "communicationScore": number, "justification": string, '
        '"completionStatus": "complete"|"partial"|"abrupt"}\n\n'
        f"Job Role: {role}\n"
        f"Job Description: {(job_description or '')[:4000]}"
    )


class ResponseGenerator:
    """Produces the next interviewer utterance from the conversation so far."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", client: OpenAI | None = None):
        self.model = model
        self.client = client or OpenAI(api_key=api_key)

    def _messages(self, system: str, history: Sequence[ConversationEntry]) -> list[dict]:
        messages = [{"role": "system", "content": system}]
        messages.extend({"role": e.role, "content": e.content} for e in history)
        return messages

    def generate(
        self,
        instruction: str,
        role: str,
        job_description: str,
        history: Sequence[ConversationEntry],
        temperature: float | None = None,
    ) -> str:
        messages = self._messages(interviewer_system_prompt(role, job_description), history)
        messages.append({"role": "user", "content": instruction})
        try:
            r = self.client.chat.completions.create(
                model=self.model,
                temperature=QUESTION_TEMPERATURE if temperature is None else temperature,
                messages=messages,
                max_tokens=220,
            )
        except Exception as e:
            raise GenerationError(f"chat completion failed: {e}") from e
        txt = (r.choices[0].message.content or "").strip() if r.choices else ""
        if not txt:
            raise GenerationError("chat completion returned no text")
        return txt

    def generate_final_score(
        self,
        history: Sequence[ConversationEntry],
        role: str,
        job_description: str,
    ) -> InterviewScore:
        """Score the finished interview.

        Never raises: provider and parse failures return
        ``InterviewScore.unavailable()``, which callers must read as
        "scoring unavailable" rather than a score of zero.
        """
        messages = self._messages(scoring_system_prompt(role, job_description), history)
        try:
            r = self.client.chat.completions.create(
                model=self.model,
                temperature=SCORING_TEMPERATURE,
                messages=messages,
                response_format={"type": "json_object"},
            )
            raw = (r.choices[0].message.content or "").strip()
            return InterviewScore.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            log_event(f"SCORE_PARSE_FAIL | {e}")
        except Exception as e:
            log_event(f"SCORE_FAIL | {e}")
        return InterviewScore.unavailable()
