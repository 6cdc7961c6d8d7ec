import logging, structlog, sys, pathlib, os

_LOG_STREAM = None
_LOG_STREAM_PATH = None

SECRET_FIELDS = ("secret", "password", "key")


def default_log_path() -> pathlib.Path:
    return pathlib.Path.home() / ".local" / "state" / "cipherdir" / "cipherdir.log"


def _log_handle(path: pathlib.Path):
    """Open (or reuse) the 0600 append-only log file."""
    global _LOG_STREAM, _LOG_STREAM_PATH
    if _LOG_STREAM is None or _LOG_STREAM_PATH != path:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        if os.name == "posix":
            os.chmod(path, 0o600)
        _LOG_STREAM = os.fdopen(fd, "a", buffering=1)
        _LOG_STREAM_PATH = path
    return _LOG_STREAM


def _filter_secrets(_, __, event_dict):
    for field in SECRET_FIELDS:
        event_dict.pop(field, None)
    return event_dict


def _human_renderer(_, __, event_dict):
    """Render structlog event dictionaries into human-readable timestamped lines."""
    ts = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "").upper()
    event = event_dict.pop("event", "")
    extras = " ".join(f"{k}={event_dict[k]}" for k in sorted(event_dict))
    return f"{ts} [{level}] {event} {extras}".strip()


def _processors():
    return [
        _filter_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.dict_tracebacks,
        _human_renderer,
    ]


def configure_default_logging():
    """Warnings and errors only, to stderr. In effect until `configure_logging` runs."""
    structlog.configure(
        processors=_processors(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_logging(debug: bool = False, log_path: pathlib.Path | None = None):
    """Route logs to stderr in debug mode, otherwise to the private log file."""
    if debug:
        target = sys.stderr
    else:
        target = _log_handle(pathlib.Path(log_path) if log_path else default_log_path())

    structlog.configure(
        processors=_processors(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=False,
    )


def get_logger(**initial):
    """Return a lazily-bound structlog logger; sinks are chosen by `configure_logging`."""
    return structlog.get_logger(**initial)


if not structlog.is_configured():
    configure_default_logging()
