from __future__ import annotations
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Optional

from .controller import DialogueController
from .settings import settings

logger = logging.getLogger(__name__)


@dataclass
class LiveSession:
	controller: DialogueController
	# number of controller display messages already written to the messages table
	persisted: int = 0


class ControllerRegistry:
	"""In-process dialogue controllers keyed by session id, least recently used evicted first."""

	def __init__(self, max_size: Optional[int] = None) -> None:
		self.max_size = max_size if max_size is not None else settings.max_live_sessions
		self._sessions: "OrderedDict[str, LiveSession]" = OrderedDict()

	def get(self, session_id: str) -> Optional[LiveSession]:
		live = self._sessions.get(session_id)
		if live is not None:
			self._sessions.move_to_end(session_id)
		return live

	def put(self, session_id: str, controller: DialogueController, *, persisted: int = 0) -> LiveSession:
		live = LiveSession(controller=controller, persisted=persisted)
		self._sessions[session_id] = live
		self._sessions.move_to_end(session_id)
		self._evict()
		return live

	def forget(self, session_id: str) -> None:
		live = self._sessions.pop(session_id, None)
		if live is not None:
			live.controller.reset_session()

	def forget_many(self, session_ids: Iterable[str]) -> None:
		for session_id in session_ids:
			self.forget(session_id)

	def clear(self) -> None:
		self.forget_many(list(self._sessions))

	def _evict(self) -> None:
		# stored state is enough to rebuild an evicted controller; busy ones are skipped
		for session_id in list(self._sessions)[:-1]:
			if len(self._sessions) <= self.max_size:
				return
			live = self._sessions[session_id]
			if live.controller.lock.locked():
				continue
			del self._sessions[session_id]
			logger.info("Evicted idle tutor session %s", session_id)

	def __contains__(self, session_id: str) -> bool:
		return session_id in self._sessions

	def __len__(self) -> int:
		return len(self._sessions)


controllers = ControllerRegistry()
