from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI, NotFoundError as OpenAINotFoundError
from pydantic import BaseModel

from ..app_logger import log_event
from ..config import (
    DEFAULT_GEMINI_MODEL,
    LLM_TEMPERATURE,
    MAX_IMAGE_COUNT,
    MAX_IMAGE_SIZE_BYTES,
    MAX_TOTAL_IMAGE_BYTES,
)
from ..models import ImageInput
from ..utils import _log_debug, preview
from .schemas import InterpretedDraftSchema, RetryPolicy

T = TypeVar("T", bound=BaseModel)

_gemini_client: Any = None
_gemini_api_key_cached: str = ""
_openai_client: Optional[AsyncOpenAI] = None


class InterpretationError(Exception):
  """The interpretation backend failed or returned unusable output."""


class ModelNotFoundError(InterpretationError):
  def __init__(self, model: str, detail: str = "") -> None:
    super().__init__(f"model not found: {model}" + (f" ({detail})" if detail else ""))
    self.model = model


def _provider_for_model(model: str) -> str:
  provider = os.getenv("QUICKCAL_LLM_PROVIDER", "auto").strip().lower()
  if provider in ("openai", "gemini"):
    return provider
  model_name = str(model or "").strip().lower()
  if model_name.startswith("gemini") or model_name.startswith("models/gemini"):
    return "gemini"
  return "openai"


def _canonical_gemini_model(model: str) -> str:
  model_name = str(model or "").strip()
  if not model_name:
    return f"models/{DEFAULT_GEMINI_MODEL}"
  if model_name.startswith("models/"):
    return model_name
  return f"models/{model_name}"


def _gemini_client_or_raise() -> Any:
  global _gemini_client, _gemini_api_key_cached
  gemini_api_key = os.getenv("GEMINI_API_KEY", "").strip()
  if not gemini_api_key:
    raise InterpretationError("GEMINI_API_KEY is not set")
  if _gemini_client is None or _gemini_api_key_cached != gemini_api_key:
    _gemini_client = genai.Client(api_key=gemini_api_key)
    _gemini_api_key_cached = gemini_api_key
  return _gemini_client


def get_async_client() -> AsyncOpenAI:
  global _openai_client
  if _openai_client is None:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
      raise InterpretationError("OPENAI_API_KEY is not set")
    _openai_client = AsyncOpenAI(api_key=api_key)
  return _openai_client


# -------------------------
# 이미지 검증
# -------------------------
def validate_images(images: Optional[Sequence[ImageInput]]) -> List[ImageInput]:
  items = list(images or [])
  if len(items) > MAX_IMAGE_COUNT:
    raise InterpretationError(f"at most {MAX_IMAGE_COUNT} images can be attached")
  total = 0
  for image in items:
    if not image.mime_type.startswith("image/"):
      raise InterpretationError(f"unsupported attachment type: {image.mime_type}")
    if image.size_bytes > MAX_IMAGE_SIZE_BYTES:
      raise InterpretationError(f"image too large: {image.name}")
    total += image.size_bytes
  if total > MAX_TOTAL_IMAGE_BYTES:
    raise InterpretationError("attached images are too large in total")
  return items


def _decode_image(image: ImageInput) -> bytes:
  try:
    return base64.b64decode(image.data_base64, validate=False)
  except (binascii.Error, ValueError) as exc:
    raise InterpretationError(f"image data is not valid base64: {image.name}") from exc


# -------------------------
# 응답 파싱
# -------------------------
def _extract_message_text(content: Any) -> str:
  if isinstance(content, str):
    return content.strip()
  if isinstance(content, list):
    chunks = []
    for item in content:
      if isinstance(item, dict):
        text_val = item.get("text")
        if isinstance(text_val, str) and text_val.strip():
          chunks.append(text_val.strip())
      elif isinstance(item, str) and item.strip():
        chunks.append(item.strip())
    return " ".join(chunks).strip()
  return ""


def _gemini_text_from_response(response: Any) -> str:
  text = getattr(response, "text", None)
  if isinstance(text, str) and text.strip():
    return text.strip()
  chunks = []
  for candidate in getattr(response, "candidates", None) or []:
    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
      text_val = getattr(part, "text", None)
      if isinstance(text_val, str) and text_val.strip():
        chunks.append(text_val.strip())
  return " ".join(chunks).strip()


def _clean_json_text(text: str) -> str:
  cleaned = (text or "").strip()
  if cleaned.startswith("```"):
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned).strip()
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
  return cleaned


def _validate_structured_response(response_model: Type[T], raw_output: str) -> Optional[T]:
  """Try the raw text, the fence-stripped text, then the outermost {...} slice."""
  if not raw_output:
    return None
  candidates = [raw_output, _clean_json_text(raw_output)]
  cleaned = candidates[-1]
  if cleaned:
    left = cleaned.find("{")
    right = cleaned.rfind("}")
    if left != -1 and right != -1 and right > left:
      candidates.append(cleaned[left:right + 1])
  seen = set()
  for candidate in candidates:
    text = (candidate or "").strip()
    if not text or text in seen:
      continue
    seen.add(text)
    try:
      return response_model.model_validate_json(text)
    except ValueError:
      continue
  return None


# -------------------------
# 프로바이더 호출
# -------------------------
def _gemini_generate_sync(model: str, prompt: str, images: Sequence[ImageInput]) -> str:
  client = _gemini_client_or_raise()
  resolved_model = _canonical_gemini_model(model)
  contents: List[Any] = [prompt]
  for image in images:
    contents.append(genai_types.Part.from_bytes(data=_decode_image(image),
                                                mime_type=image.mime_type))
  config = genai_types.GenerateContentConfig(
      response_mime_type="application/json",
      temperature=LLM_TEMPERATURE,
  )
  try:
    response = client.models.generate_content(
        model=resolved_model,
        contents=contents,
        config=config,
    )
  except genai_errors.APIError as exc:
    if exc.code == 404:
      raise ModelNotFoundError(model, str(exc)) from exc
    raise InterpretationError(f"Gemini request failed: {exc}") from exc
  return _gemini_text_from_response(response)


def _compose_openai_messages(prompt: str, images: Sequence[ImageInput]) -> List[Dict[str, Any]]:
  user_parts: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
  for image in images:
    user_parts.append({
        "type": "image_url",
        "image_url": {
            "url": f"data:{image.mime_type};base64,{image.data_base64}"
        }
    })
  return [
      {
          "role": "system",
          "content": "Respond with a single valid JSON object only.",
      },
      {
          "role": "user",
          "content": user_parts,
      },
  ]


async def _openai_generate(model: str, prompt: str, images: Sequence[ImageInput]) -> str:
  client = get_async_client()
  try:
    completion = await client.chat.completions.create(
        model=model,
        messages=_compose_openai_messages(prompt, images),
        response_format={"type": "json_object"},
    )
  except OpenAINotFoundError as exc:
    raise ModelNotFoundError(model, str(exc)) from exc
  return _extract_message_text(completion.choices[0].message.content)


async def _generate_raw(model: str, prompt: str, images: Sequence[ImageInput]) -> str:
  if _provider_for_model(model) == "gemini":
    return await asyncio.to_thread(_gemini_generate_sync, model, prompt, images)
  return await _openai_generate(model, prompt, images)


async def _generate_with_policy(model: str,
                                prompt: str,
                                images: Sequence[ImageInput],
                                policy: RetryPolicy) -> Tuple[str, str]:
  current_model = model or DEFAULT_GEMINI_MODEL
  fallback_used = False
  attempt = 0
  while True:
    attempt += 1
    try:
      raw_output = await asyncio.wait_for(
          _generate_raw(current_model, prompt, images),
          timeout=policy.timeout_seconds,
      )
      return raw_output, current_model
    except asyncio.TimeoutError as exc:
      if attempt < policy.max_attempts:
        log_event("warn", "llm.request.timeout_retry", {
            "model": current_model,
            "attempt": attempt,
        })
        if policy.backoff_seconds:
          await asyncio.sleep(policy.backoff_seconds * attempt)
        continue
      raise InterpretationError(
          f"request timed out after {policy.timeout_seconds:g}s") from exc
    except ModelNotFoundError:
      fallback = policy.fallback_model
      if fallback_used or not fallback or fallback == current_model:
        raise
      log_event("warn", "llm.model.fallback", {
          "requested": current_model,
          "fallback": fallback,
      })
      fallback_used = True
      current_model = fallback
      attempt = 0
    except InterpretationError:
      raise
    except Exception as exc:
      raise InterpretationError(str(exc) or exc.__class__.__name__) from exc


async def generate_json(*,
                        model: str,
                        prompt: str,
                        images: Optional[Sequence[ImageInput]] = None,
                        retry_policy: Optional[RetryPolicy] = None,
                        response_model: Type[T] = InterpretedDraftSchema) -> T:
  """
  Run one structured completion and return the validated response model.

  The provider is picked from the model name (``gemini*`` -> Gemini, anything
  else -> OpenAI). Timeouts are retried and a missing model falls back once,
  as described by ``retry_policy``. Raises InterpretationError when no valid
  JSON object comes back.
  """
  policy = retry_policy or RetryPolicy()
  checked_images = validate_images(images)
  raw_output, used_model = await _generate_with_policy(model, prompt, checked_images, policy)
  _log_debug(f"[LLM RAW] model={used_model}\n{raw_output or '(empty)'}\n[LLM RAW END]")
  parsed = _validate_structured_response(response_model, raw_output)
  if parsed is None:
    log_event("error", "llm.response.invalid", {
        "model": used_model,
        "preview": preview(raw_output),
    })
    raise InterpretationError("response was not a valid JSON object")
  return parsed


def dump_for_prompt(payload: Dict[str, Any]) -> str:
  return json.dumps(payload, ensure_ascii=False, indent=2)
