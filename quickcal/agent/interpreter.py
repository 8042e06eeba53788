from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional, Sequence

from ..app_logger import log_event
from ..config import APP_TIMEZONE_NAME
from ..models import EventDraft, ImageInput, Settings
from ..utils import preview
from . import llm_provider
from .dates import format_local_datetime, now_local
from .llm_provider import InterpretationError
from .normalizer import sanitize_draft
from .schemas import RetryPolicy

__all__ = ["InterpretationError", "InterpretationGateway", "LLMInterpreter"]

DRAFT_JSON_SCHEMA = """{
  "title": "string",
  "start": "YYYY-MM-DDTHH:mm:ss or empty",
  "end": "YYYY-MM-DDTHH:mm:ss or empty",
  "location": "string",
  "description": "string",
  "confidence": 0.0,
  "uncertain": false,
  "needs_clarification": false,
  "clarification_question": "string"
}"""


class InterpretationGateway(abc.ABC):
  """Turns free text and images into drafts. Implementations raise InterpretationError."""

  @abc.abstractmethod
  async def interpret(self,
                      text: str,
                      images: Sequence[ImageInput],
                      settings: Settings,
                      instruction_text: str) -> EventDraft:
    ...

  @abc.abstractmethod
  async def refine(self,
                   draft: EventDraft,
                   question: str,
                   answer: str,
                   images: Sequence[ImageInput],
                   settings: Settings,
                   instruction_text: str) -> Dict[str, Any]:
    ...


def _common_rules(settings: Settings, has_images: bool, *, merging: bool) -> List[str]:
  rules = [
      "- Output JSON only.",
      f"- Interpret all dates and times in {APP_TIMEZONE_NAME}.",
      f"- Resolve relative expressions (today, tomorrow, next week) against {format_local_datetime(now_local())}.",
      '- start/end are local times formatted "YYYY-MM-DDTHH:mm:ss".',
  ]
  if merging:
    rules.append("- Set needs_clarification=true when required information is still missing.")
    rules.append("- clarification_question holds the single next question to ask.")
  else:
    rules.append("- Set needs_clarification=true when title, start or end is missing.")
    rules.append("- When something is ambiguous return exactly one clarification_question.")
    rules.append(f"- Without an explicit end time the event lasts {settings.default_duration_minutes} minutes.")
    rules.append("- User-defined rules take precedence.")
  if has_images:
    rules.append("- Read the text inside the attached images (OCR) and combine it with the input.")
  return rules


def build_interpret_prompt(text: str,
                           settings: Settings,
                           instruction_text: str,
                           has_images: bool) -> str:
  sections = [
      "You extract calendar events. Extract one Google Calendar event from the input.",
      "",
      "Constraints:",
      *_common_rules(settings, has_images, merging=False),
      "",
      "User-defined rules:",
      settings.time_resolution_rules or "(none)",
      "",
      "Custom instruction:",
      instruction_text or "(none)",
      "",
      "Input:",
      text or "(none)",
      "",
      "JSON schema:",
      DRAFT_JSON_SCHEMA,
  ]
  return "\n".join(sections)


def build_refine_prompt(draft: EventDraft,
                        question: str,
                        answer: str,
                        settings: Settings,
                        instruction_text: str,
                        has_images: bool) -> str:
  current = draft.model_dump(exclude={"user_confirmed", "duplicate_confirmed"})
  sections = [
      "You extract calendar events. Update the draft using the user's answer.",
      "",
      "Constraints:",
      *_common_rules(settings, has_images, merging=True),
      "",
      "User-defined rules:",
      settings.time_resolution_rules or "(none)",
      "",
      "Custom instruction:",
      instruction_text or "(none)",
      "",
      "Current draft:",
      llm_provider.dump_for_prompt(current),
      "",
      "Previous question:",
      question or "(none)",
      "",
      "User answer:",
      answer or "(none)",
      "",
      "JSON schema:",
      DRAFT_JSON_SCHEMA,
  ]
  return "\n".join(sections)


class LLMInterpreter(InterpretationGateway):
  """Gemini or OpenAI backed interpreter, chosen by ``settings.model``."""

  def __init__(self, retry_policy: Optional[RetryPolicy] = None) -> None:
    self.retry_policy = retry_policy or RetryPolicy()

  async def interpret(self,
                      text: str,
                      images: Sequence[ImageInput],
                      settings: Settings,
                      instruction_text: str) -> EventDraft:
    log_event("info", "llm.interpret.start", {
        "model": settings.model,
        "image_count": len(images),
        "input_preview": preview(text, 120),
    })
    prompt = build_interpret_prompt(text, settings, instruction_text, bool(images))
    parsed = await llm_provider.generate_json(
        model=settings.model,
        prompt=prompt,
        images=images,
        retry_policy=self.retry_policy,
    )
    draft = sanitize_draft(parsed.model_dump(), settings.default_duration_minutes)
    log_event("info", "llm.interpret.done", {
        "model": settings.model,
        "missing": draft.missing_fields(),
        "needs_clarification": draft.needs_clarification,
    })
    return draft

  async def refine(self,
                   draft: EventDraft,
                   question: str,
                   answer: str,
                   images: Sequence[ImageInput],
                   settings: Settings,
                   instruction_text: str) -> Dict[str, Any]:
    log_event("info", "llm.refine.start", {
        "model": settings.model,
        "image_count": len(images),
        "question_preview": preview(question, 120),
        "answer_preview": preview(answer, 120),
    })
    prompt = build_refine_prompt(draft, question, answer, settings, instruction_text,
                                 bool(images))
    parsed = await llm_provider.generate_json(
        model=settings.model,
        prompt=prompt,
        images=images,
        retry_policy=self.retry_policy,
    )
    refined = parsed.model_dump(exclude_unset=True)
    log_event("info", "llm.refine.done", {
        "model": settings.model,
        "fields": sorted(refined),
    })
    return refined
