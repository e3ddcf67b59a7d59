from __future__ import annotations
import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from .settings import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class FileStorage:
	"""Lecture PDFs on local disk, addressed by a generated key."""

	def __init__(self, root: Optional[str] = None) -> None:
		self.root = Path(root or settings.upload_dir).resolve()
		self.root.mkdir(parents=True, exist_ok=True)

	def save(self, data: bytes, original_name: str, *, prefix: str = "pdfs") -> str:
		safe_name = _UNSAFE_CHARS.sub("_", Path(original_name or "document.pdf").name)[:120] or "document.pdf"
		key = f"{prefix}/{uuid.uuid4().hex}-{safe_name}"
		target = self._path(key)
		target.parent.mkdir(parents=True, exist_ok=True)
		target.write_bytes(data)
		logger.info("Stored %s (%d bytes)", key, len(data))
		return key

	def delete(self, key: str) -> bool:
		# Best effort: a missing or locked file never blocks the database delete
		try:
			self._path(key).unlink()
			return True
		except FileNotFoundError:
			logger.warning("Stored file %s already missing", key)
		except OSError as exc:
			logger.warning("Failed to delete stored file %s: %s", key, exc)
		return False

	def exists(self, key: str) -> bool:
		return self._path(key).is_file()

	def _path(self, key: str) -> Path:
		path = (self.root / key).resolve()
		if self.root not in path.parents:
			raise ValueError(f"Invalid storage key: {key}")
		return path
