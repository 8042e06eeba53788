from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional

from .config import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_GEMINI_MODEL,
    DEFAULT_INSTRUCTION,
    DEFAULT_TIME_RESOLUTION_RULES,
    GOOGLE_CALENDAR_ID,
)

InputMode = Literal["ai", "direct"]
ConfirmationPolicy = Literal["always", "uncertain_only"]


class EventDraft(BaseModel):
    title: str = ""
    start: str = ""  # "YYYY-MM-DDTHH:MM:SS"
    end: str = ""
    location: str = ""
    description: str = ""
    confidence: float = 0.0
    uncertain: bool = False
    needs_clarification: bool = False
    clarification_question: str = ""
    user_confirmed: bool = False
    duplicate_confirmed: bool = False

    def missing_fields(self) -> List[str]:
        return [name for name in ("title", "start", "end") if not getattr(self, name)]


class DraftPreview(BaseModel):
    title: str = ""
    start: str = ""
    end: str = ""
    location: str = ""
    description: str = ""


class ImageInput(BaseModel):
    name: str = "image"
    mime_type: str
    data_base64: str
    size_bytes: int = 0


class CreatedEvent(BaseModel):
    id: str
    html_link: str = ""
    title: str
    start: str
    end: str


class HistoryEntry(BaseModel):
    id: str
    title: str
    start: str
    end: str
    created_at: str
    html_link: str = ""


class InstructionPreset(BaseModel):
    id: str
    name: str = "Untitled"
    text: str = ""


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default_duration_minutes: int = DEFAULT_DURATION_MINUTES
    input_mode: InputMode = "ai"
    model: str = DEFAULT_GEMINI_MODEL
    calendar_id: str = GOOGLE_CALENDAR_ID
    confirmation_policy: ConfirmationPolicy = "uncertain_only"
    instruction: str = DEFAULT_INSTRUCTION
    time_resolution_rules: str = DEFAULT_TIME_RESOLUTION_RULES
    instruction_presets: List[InstructionPreset] = Field(default_factory=list)
    active_preset_id: Optional[str] = None
    history: List[HistoryEntry] = Field(default_factory=list)


class SettingsPatch(BaseModel):
    default_duration_minutes: Optional[int] = Field(default=None, gt=0)
    input_mode: Optional[InputMode] = None
    model: Optional[str] = None
    calendar_id: Optional[str] = None
    confirmation_policy: Optional[ConfirmationPolicy] = None
    instruction: Optional[str] = None
    time_resolution_rules: Optional[str] = None
    instruction_presets: Optional[List[InstructionPreset]] = None
    active_preset_id: Optional[str] = None


class ScheduleRequest(BaseModel):
    text: Optional[str] = None
    images: Optional[List[ImageInput]] = None


class AnswerRequest(BaseModel):
    text: Optional[str] = None
    images: Optional[List[ImageInput]] = None
