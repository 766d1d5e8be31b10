import logging
import re
import sys

from app.core.config import settings

# Patrones que pueden contener secretos (tokens, codigos OTP, cabeceras)
_SENSITIVE_PATTERN = re.compile(
    r"\b(token|auth_token|otp|code|secret|authorization|jwt)\s*[=:]\s*\S+",
    re.IGNORECASE,
)


def _redact(match: re.Match) -> str:
    text = match.group()
    sep = "=" if "=" in text else ":"
    return text.split(sep)[0] + sep + "***"


class SensitiveDataFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SENSITIVE_PATTERN.sub(_redact, message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if any(isinstance(f, SensitiveDataFilter) for h in root_logger.handlers for f in h.filters):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    handler.addFilter(SensitiveDataFilter())

    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root_logger.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
