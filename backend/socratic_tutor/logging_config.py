import logging
import re
import sys


_SECRET_PATTERNS = [
	re.compile(r"(?i)(x-goog-api-key\s*[=:]\s*)([^\s,;]+)"),
	re.compile(r"(?i)([?&]key=)([^\s&]+)"),
	re.compile(r"(?i)(api[_-]?key\s*[=:]\s*)([^\s,;]+)"),
	re.compile(r"(?i)(authorization\s*[=:]\s*bearer\s+)([^\s,;]+)"),
	re.compile(r"(?i)(password\s*[=:]\s*)([^\s,;]+)"),
]


def redact_secrets(message: str) -> str:
	text = str(message or "")
	for pattern in _SECRET_PATTERNS:
		text = pattern.sub(r"\1[REDACTED]", text)
	return text


class SecretRedactionFilter(logging.Filter):
	def filter(self, record: logging.LogRecord) -> bool:
		record.msg = redact_secrets(record.getMessage())
		record.args = ()
		return True


def configure_logging(level: str = "INFO") -> None:
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
		handlers=[logging.StreamHandler(sys.stdout)],
	)
	redaction_filter = SecretRedactionFilter()
	for handler in logging.getLogger().handlers:
		handler.addFilter(redaction_filter)
	# httpx logs full request URLs, which carry the Gemini key in the query string
	logging.getLogger("httpx").setLevel(logging.WARNING)
	logging.getLogger("httpcore").setLevel(logging.WARNING)
	logging.getLogger("passlib").setLevel(logging.ERROR)
