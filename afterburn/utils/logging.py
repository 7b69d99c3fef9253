"""
Logging configuration with secret redaction.

Scans touch third-party pages, so anything that reaches a log line, a step
result or captured evidence goes through the same redaction helpers.
"""

import re
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from afterburn.utils.config import SECRET_PATTERNS

REDACTED = "[REDACTED]"

_TEXT_PATTERNS = [
    (re.compile(r'\b(sk-ant-[a-zA-Z0-9-]{20,})'), '[REDACTED_API_KEY]'),
    (re.compile(r'\b(sk-[a-zA-Z0-9]{20,})'), '[REDACTED_API_KEY]'),
    (re.compile(r'\b(gh[pousr]_[a-zA-Z0-9]{36,})'), '[REDACTED_GITHUB_TOKEN]'),
    (re.compile(r'\b(github_pat_[a-zA-Z0-9_]{22,})'), '[REDACTED_GITHUB_TOKEN]'),
    (re.compile(r'\b(AKIA[0-9A-Z]{16})'), '[REDACTED_AWS_KEY]'),
    (re.compile(r'\b([sr]k_(?:live|test)_[a-zA-Z0-9]{20,})'), '[REDACTED_STRIPE_KEY]'),
    (re.compile(r'(Bearer\s+)[a-zA-Z0-9._\-]{20,}', re.IGNORECASE), r'\1[REDACTED_TOKEN]'),
    (re.compile(r'(Authorization:\s*)\S{20,}', re.IGNORECASE), r'\1[REDACTED_TOKEN]'),
    (
        re.compile(
            r'((?:password|passwd|secret|token|apikey|api_key|access_token|auth_token)\s*[=:]\s*)'
            r'("[^"]*"|\'[^\']*\'|\S{8,})',
            re.IGNORECASE,
        ),
        r'\1[REDACTED]',
    ),
    (re.compile(r'\b[0-9a-f]{40,}\b', re.IGNORECASE), '[REDACTED_HEX_TOKEN]'),
]

_BASE64_TOKEN = re.compile(r'\b[A-Za-z0-9+/]{32,}={0,2}\b')

SENSITIVE_QUERY_PARAMS = {
    'token', 'key', 'apikey', 'api_key', 'secret', 'password', 'passwd',
    'access_token', 'auth_token', 'session', 'jwt',
}


class RedactingFilter(logging.Filter):
    """
    Masks secrets in log records before any handler formats them.

    Log lines are stricter than stored results: short bearer/basic
    credentials and any value assigned to a secret-looking key are masked,
    on top of the free-text rules in `redact_sensitive_data`.
    """

    SHORT_CREDENTIALS = [
        re.compile(r'(Bearer|Basic)\s+[A-Za-z0-9\-_\.\+/=]+', re.IGNORECASE),
        re.compile(r'eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+(?:\.[A-Za-z0-9\-_]+)?'),
    ]

    KEY_VALUE = re.compile(
        r'(?P<key>[A-Za-z_\-]*(?:' + '|'.join(SECRET_PATTERNS) + r')[A-Za-z_\-]*)'
        r'\s*[=:]\s*["\']?[^"\'\s,&}]+["\']?',
        re.IGNORECASE,
    )

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_string(str(record.msg))

        if isinstance(record.args, dict):
            record.args = redact_dict(record.args)
        elif record.args:
            record.args = tuple(
                self._redact_string(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    def _redact_string(self, text: str) -> str:
        result = redact_sensitive_data(text)
        for pattern in self.SHORT_CREDENTIALS:
            result = pattern.sub(REDACTED, result)
        return self.KEY_VALUE.sub(lambda m: f"{m.group('key')}={REDACTED}", result)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; scan context passed via `extra=` is kept."""

    CONTEXT_FIELDS = ("session_id", "stage", "workflow", "url")

    def __init__(self):
        super().__init__()
        self.redacting_filter = RedactingFilter()

    def format(self, record: logging.LogRecord) -> str:
        self.redacting_filter.filter(record)

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = redact_sensitive_data(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None):
    """
    Route all log output through one redacting stream handler.

    Library users embedding the engine in their own process can skip this and
    attach `RedactingFilter` to their handlers instead.
    """
    from afterburn.utils.config import settings

    level = (level or settings.LOG_LEVEL).upper()
    log_format = (log_format or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    handler.addFilter(RedactingFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level))

    for noisy in ("asyncio", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def redact_dict(data: Dict[str, Any], keys_to_redact: list = None) -> Dict[str, Any]:
    """Redact sensitive keys from a dictionary."""
    if keys_to_redact is None:
        keys_to_redact = SECRET_PATTERNS

    redacted = {}
    for key, value in data.items():
        should_redact = any(
            re.search(pattern, key, re.IGNORECASE)
            for pattern in keys_to_redact
        )

        if should_redact:
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_dict(value, keys_to_redact)
        elif isinstance(value, list):
            redacted[key] = [
                redact_dict(item, keys_to_redact) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value

    return redacted


def _redact_base64(match: re.Match) -> str:
    token = match.group(0)
    # Prose words rarely mix case and digits
    if (re.search(r'[A-Z]', token) and re.search(r'[a-z]', token)
            and re.search(r'[0-9]', token)):
        return '[REDACTED_BASE64_TOKEN]'
    return token


def redact_sensitive_data(text: Optional[str]) -> Optional[str]:
    """
    Redact obvious secrets from free text while keeping error context readable.

    Used for console messages, step errors and anything else captured from
    the page under test before it is stored in results.
    """
    if not text:
        return text

    redacted = text
    for pattern, replacement in _TEXT_PATTERNS:
        redacted = pattern.sub(replacement, redacted)

    return _BASE64_TOKEN.sub(_redact_base64, redacted)


def redact_sensitive_url(url: Optional[str]) -> Optional[str]:
    """Mask sensitive query parameter values; fall back to text redaction."""
    if not url:
        return url

    try:
        parts = urlsplit(url)
    except ValueError:
        return redact_sensitive_data(url)

    if not parts.scheme or not parts.netloc:
        return redact_sensitive_data(url)

    if not parts.query:
        return url

    params = [
        (name, REDACTED if name.lower() in SENSITIVE_QUERY_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(params, safe='[]')))
