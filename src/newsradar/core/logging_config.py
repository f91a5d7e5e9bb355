"""structlog configuration for the scraping core.

``configure_logging()`` is called by the application factory.  Afterwards the
lower-level modules keep using plain stdlib loggers (``logging.getLogger``
with a ``scraper:`` message prefix) while the orchestrator and router use
``structlog.get_logger`` with event names and keyword context.  Both end up
in the same handler and renderer.

While a scrape job runs, :data:`job_id_var` holds its ID and every record,
including those from the fetcher and browser driver, carries ``job_id``.
"""

from __future__ import annotations

import logging
import sys
import urllib.parse
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
"""ID of the scrape job executing in the current context (set by the orchestrator)."""

_REDACTED = "[REDACTED]"

#: Event-dict keys (lower-cased substrings) whose values are credentials.
#: Carried cookies and the OpenRouter key are the ones that occur in practice.
_SENSITIVE_KEYS: tuple[str, ...] = (
    "api_key",
    "authorization",
    "bearer",
    "cookie",
    "password",
    "secret",
    "token",
)

#: Event-dict keys holding URLs that may embed credentials.
_URL_KEYS: tuple[str, ...] = ("url", "final_url", "source_url", "location")

#: Third-party loggers lowered to WARNING outside DEBUG mode.
_QUIET_LOGGERS: tuple[str, ...] = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "trafilatura",
    "playwright",
    "asyncio",
)


def _is_sensitive(key: object) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def scrub_url(url: str) -> str:
    """Strip userinfo and credential-looking query values from ``url``."""
    try:
        parsed = urllib.parse.urlsplit(url)
    except ValueError:
        return url
    netloc = parsed.netloc.rsplit("@", 1)[-1]
    query = urllib.parse.urlencode(
        [
            (k, _REDACTED if _is_sensitive(k) else v)
            for k, v in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        ],
        safe="[]",
    )
    return urllib.parse.urlunsplit((parsed.scheme, netloc, parsed.path, query, parsed.fragment))


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Redact credential fields, one level into dict values, and scrub URL fields."""
    for key, value in list(event_dict.items()):
        if _is_sensitive(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {k: (_REDACTED if _is_sensitive(k) else v) for k, v in value.items()}
        elif key in _URL_KEYS and isinstance(value, str):
            event_dict[key] = scrub_url(value)
    return event_dict


def _inject_job_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    job_id = job_id_var.get()
    if job_id is not None:
        event_dict.setdefault("job_id", job_id)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _inject_job_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib and structlog records through one stdout handler.

    ``DEBUG`` renders coloured console output; any other level renders one
    JSON object per line.  Calling it again replaces the root handlers.

    Args:
        log_level: Level name, case-insensitive.  Unknown names mean INFO.
    """
    level_name = log_level.upper()
    debug = level_name == "DEBUG"
    shared = _shared_processors()

    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True) if debug else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
