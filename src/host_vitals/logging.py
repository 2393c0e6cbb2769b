"""Console lines and the structured log file.

Two outputs, two audiences. The console gets short Rich-formatted lines
(clock, level tag, icon, message) for whoever is watching the daemon. The
rotating log file gets one JSON object per structlog event, with no markup.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from host_vitals.config import Config

SOURCE = "host-vitals"

_console = Console(highlight=False)

# level -> (tag, style)
_LEVELS: dict[str, tuple[str, str]] = {
    "info": ("info", "bright_blue"),
    "warn": ("warn", "yellow"),
    "error": ("err", "bold red"),
}


class Icon:
    """Glyphs shown between the level tag and the message."""

    DONE = "[green]✓[/]"
    FAILED = "[red]✗[/]"
    STOPPING = "[dim]…[/]"
    PULSE = "[magenta]●[/]"
    RESTART = "[yellow]↻[/]"
    SIGNAL = "[bold]![/]"
    EJECT = "[cyan]⏏[/]"


def emit(level: str, msg: str, icon: str = "") -> None:
    """Print one console line.

    Args:
        level: "info", "warn" or "error"; anything else is printed unstyled
        msg: Message text, may contain Rich markup
        icon: Optional Icon glyph
    """
    tag, style = _LEVELS.get(level, (level, "default"))
    parts = [f"[dim]{datetime.now():%H:%M:%S}[/]", f"[{style}]\\[{tag}][/]"]
    if icon:
        parts.append(icon)
    parts.append(msg)
    _console.print(" ".join(parts))


def info(msg: str, icon: str = "") -> None:
    emit("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    emit("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    emit("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Daemon events
# ─────────────────────────────────────────────────────────────────────────────


def coordinator_started(samplers: list[str]) -> None:
    info(f"Sampling [cyan]{', '.join(samplers)}[/]", Icon.DONE)


def coordinator_stopping() -> None:
    info("Stopping samplers", Icon.STOPPING)


def coordinator_stopped() -> None:
    info("All samplers stopped", Icon.DONE)


def signal_received(name: str) -> None:
    info(f"Got [bold]{name}[/], shutting down", Icon.SIGNAL)


def sampler_restarted(sampler_id: str) -> None:
    warn(f"[cyan]{sampler_id}[/] sampler went stale, restarted", Icon.RESTART)


def eject_result(mount_point: str, success: bool, reason: str | None = None) -> None:
    """Report a user-initiated eject."""
    if success:
        info(f"Ejected [cyan]{mount_point}[/]", Icon.EJECT)
        return
    error(f"Could not eject [cyan]{mount_point}[/]: {reason or 'unknown error'}", Icon.FAILED)


def heartbeat(cpu: str, download: str, upload: str, disk: str, restarts: int) -> None:
    """One-line summary of the published values."""
    info(
        f"cpu [cyan]{cpu}[/]  net [cyan]↓{download} ↑{upload}[/]  "
        f"disk [cyan]{disk}[/]  [dim]{restarts} restarts[/]",
        Icon.PULSE,
    )


def config_created(path: str) -> None:
    info(f"Wrote default config to [cyan]{path}[/]", Icon.DONE)


# ─────────────────────────────────────────────────────────────────────────────
# Log file
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    event_dict["source"] = SOURCE
    return event_dict


def _shared_processors() -> list[structlog.types.Processor]:
    """Processors applied to both structlog events and plain stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source,
        structlog.processors.format_exc_info,
    ]


def configure(config: Config, level: int = logging.INFO) -> None:
    """Route structlog through the stdlib root logger into a rotating JSON Lines file.

    Args:
        config: Supplies the log path and rotation limits
        level: Minimum level written to the file
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
