from __future__ import annotations

import abc
import copy
from typing import Dict, Optional

from .schemas import ClarificationSession


class SessionStore(abc.ABC):
  """Keyed storage for pending clarification sessions."""

  @abc.abstractmethod
  def get(self, session_id: str) -> Optional[ClarificationSession]:
    ...

  @abc.abstractmethod
  def set(self, session_id: str, session: ClarificationSession) -> None:
    ...

  @abc.abstractmethod
  def delete(self, session_id: str) -> None:
    ...

  @abc.abstractmethod
  def __len__(self) -> int:
    """Number of open sessions."""

  def contains(self, session_id: str) -> bool:
    return self.get(session_id) is not None


class InMemorySessionStore(SessionStore):
  """Process-local store; values are deep-copied in and out."""

  def __init__(self) -> None:
    self._pending_clarifications: Dict[str, ClarificationSession] = {}

  def get(self, session_id: str) -> Optional[ClarificationSession]:
    stored = self._pending_clarifications.get(session_id)
    if stored is None:
      return None
    return copy.deepcopy(stored)

  def set(self, session_id: str, session: ClarificationSession) -> None:
    if not session_id:
      return
    self._pending_clarifications[session_id] = copy.deepcopy(session)

  def delete(self, session_id: str) -> None:
    if not session_id:
      return
    self._pending_clarifications.pop(session_id, None)

  def __len__(self) -> int:
    return len(self._pending_clarifications)
