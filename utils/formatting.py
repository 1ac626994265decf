"""Human readable formatting helpers."""

from __future__ import annotations

from core.models import Rectangle


def format_time(seconds: float) -> str:
    """Return ``seconds`` as ``"1h 2m 3s"``, ``"2m 3s"`` or ``"3s"``."""

    seconds = max(float(seconds), 0.0)
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h > 0:
        return f"{h}h {m}m {s}s"
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"


def format_rect(rect: Rectangle) -> str:
    """Return rectangle corners and size, e.g. ``(0,0) - (10,5) [10x5]``."""

    return (
        f"({rect.x0},{rect.y0}) - ({rect.x1},{rect.y1}) "
        f"[{rect.width}x{rect.height}]"
    )
