"""Formatting utilities for consistent output across the CLI and log lines."""

PLACEHOLDER = "—"

_SPEED_UNITS = ("B/s", "KB/s", "MB/s", "GB/s")
_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def _scale(value: float, units: tuple[str, ...], step: float) -> str:
    index = 0
    while value >= step and index < len(units) - 1:
        value /= step
        index += 1
    if index == 0:
        return f"{value:.0f} {units[index]}"
    return f"{value:.1f} {units[index]}"


def or_dash(value: object | None) -> str:
    """Render a possibly-missing value, using the placeholder for None."""
    if value is None:
        return PLACEHOLDER
    return str(value)


def format_speed(bytes_per_second: float | None) -> str:
    """Format a transfer rate with decimal units.

    Returns:
        "512 B/s", "1.5 MB/s", or the placeholder for negative/missing values.
    """
    if bytes_per_second is None or bytes_per_second < 0:
        return PLACEHOLDER
    return _scale(bytes_per_second, _SPEED_UNITS, 1000)


def format_bytes(count: int | None) -> str:
    """Format a byte count with decimal units (disk/network sizes)."""
    if count is None or count < 0:
        return PLACEHOLDER
    return _scale(float(count), _SIZE_UNITS, 1000)


def format_memory(count: int | None) -> str:
    """Format a byte count with binary units (RAM sizes)."""
    if count is None or count < 0:
        return PLACEHOLDER
    return _scale(float(count), _SIZE_UNITS, 1024)


def format_percentage(value: float | None, decimals: int = 0) -> str:
    """Format a 0-100 percentage."""
    if value is None or value < 0:
        return PLACEHOLDER
    return f"{value:.{decimals}f}%"


def format_uptime(seconds: float | None) -> str:
    """Format uptime as days/hours/minutes.

    Args:
        seconds: Uptime in seconds

    Returns:
        "2 days, 3 hours, 4 minutes", "3 hours, 4 minutes" or "4 minutes",
        or the placeholder when uptime is unknown.
    """
    if seconds is None or seconds <= 0:
        return PLACEHOLDER

    total = int(seconds)
    days = total // 86400
    hours = (total % 86400) // 3600
    minutes = (total % 3600) // 60

    if days > 0:
        return f"{days} days, {hours} hours, {minutes} minutes"
    if hours > 0:
        return f"{hours} hours, {minutes} minutes"
    return f"{minutes} minutes"


def format_load_average(value: float | None) -> str:
    if value is None or value < 0:
        return PLACEHOLDER
    return f"{value:.2f}"


def format_temperature(celsius: float | None) -> str:
    """Format a sensor temperature as whole degrees Celsius."""
    if celsius is None or celsius <= 0:
        return PLACEHOLDER
    return f"{celsius:.0f}°C"
