"""Loguru sinks and the structured log records the pipeline emits.

Records carry their fields through `logger.bind`, so the file sink can be
switched to JSON lines (`LOG_SERIALIZE=true`) without touching call sites.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from searchsynth.config import Settings, settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {name}:{line} - {message} | {extra}"

NOISY_LOGGERS = (
    "uvicorn.access",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "trafilatura",
    "asyncio",
)

_handler_ids: list[int] = []


def configure_logging(config: Settings = settings) -> None:
    """(Re)install the console and file sinks. Safe to call more than once."""
    if not _handler_ids:
        logger.remove()
    for handler_id in _handler_ids:
        logger.remove(handler_id)
    _handler_ids.clear()

    logger.configure(extra={"component": "app"})
    _handler_ids.append(
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=config.app_log_level.upper(),
            colorize=True,
        )
    )
    if config.log_to_file:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        _handler_ids.append(
            logger.add(
                log_dir / "searchsynth_{time:YYYY-MM-DD}.log",
                format=FILE_FORMAT,
                level="DEBUG",
                rotation="00:00",
                retention="7 days",
                compression="zip",
                serialize=config.log_serialize,
                enqueue=True,
            )
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(config.noisy_log_level.upper())


configure_logging()


def log_llm_call(
    provider: str,
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """One record per completion, parse or stream against an LLM provider."""
    bound = logger.bind(
        component="llm",
        provider=provider,
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        duration_ms=duration_ms,
    )
    if error:
        bound.error(f"{caller} -> {provider}/{model} failed after {duration_ms}ms: {error}")
    else:
        bound.info(
            f"{caller} -> {provider}/{model} {duration_ms}ms "
            f"({input_tokens} in / {output_tokens} out)"
        )


def log_pipeline_step(
    session_id: str,
    stage: str,
    status: str,
    data: Optional[dict[str, Any]] = None,
) -> None:
    details = ", ".join(f"{k}={v}" for k, v in (data or {}).items())
    logger.bind(component="pipeline", session_id=session_id, stage=stage, status=status).info(
        f"[{session_id[:8]}] {stage}: {status}" + (f" ({details})" if details else "")
    )


def log_event(event_type: str, message: str, **fields: Any) -> None:
    logger.bind(component="api", event_type=event_type, **fields).info(f"{event_type}: {message}")
