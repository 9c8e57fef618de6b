# ==============================================================================
# Shared Utilities for CLI Commands
# ==============================================================================
"""
Terminal rendering helpers for the telemetry CLI.

`telemetry stats` renders a cyan box of label/value rows, section dividers
and inline bar charts; `telemetry db status` uses the pass/fail badge.
"""

import re

# ==============================================================================
# Constants
# ==============================================================================

BOX_WIDTH = 68
LABEL_WIDTH = 26


# ==============================================================================
# ANSI Colors and Box Drawing
# ==============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_CYAN = "\033[96m"


class Box:
    """Box-drawing characters (corners, tees, bar fill)."""

    H, V = "─", "│"
    TL, TR, BL, BR = "┌", "┐", "└", "┘"
    LT, RT = "├", "┤"
    BAR = "█"


class Icons:
    """Pass/fail markers."""

    CHECK = "✓"
    CROSS = "✗"


C, B, I = Colors, Box, Icons


# ==============================================================================
# Box Drawing Helpers
# ==============================================================================

_ANSI_ESCAPE_PATTERN = re.compile(r"\033\[[0-9;]*m")


def _visible_len(text: str) -> int:
    return len(_ANSI_ESCAPE_PATTERN.sub("", text))


def _box_header(title: str, width: int = BOX_WIDTH) -> str:
    """Top border with a centered title."""
    inner_width = width - 2
    title_padded = f" {title} "
    left_bar = (inner_width - len(title_padded)) // 2
    right_bar = inner_width - left_bar - len(title_padded)
    return (
        f"{C.CYAN}{B.TL}{B.H * left_bar}{C.BOLD}{C.WHITE}{title_padded}"
        f"{C.RESET}{C.CYAN}{B.H * right_bar}{B.TR}{C.RESET}"
    )


def _section_header(title: str, width: int = BOX_WIDTH) -> str:
    """Divider row that opens a titled section."""
    inner_width = width - 2
    title_padded = f" {title} "
    bar_len = inner_width - len(title_padded) - 1  # -1 for the first H after LT
    return (
        f"{C.CYAN}{B.LT}{B.H}{C.BOLD}{title_padded}{C.RESET}{C.CYAN}{B.H * bar_len}{B.RT}{C.RESET}"
    )


def _box_line(content: str, width: int = BOX_WIDTH) -> str:
    """Wrap content in the side borders, padding to the right edge."""
    inner_width = width - 2
    padding = max(0, inner_width - _visible_len(content))
    return f"{C.CYAN}{B.V}{C.RESET}{content}{' ' * padding}{C.CYAN}{B.V}{C.RESET}"


def _empty_line(width: int = BOX_WIDTH) -> str:
    return f"{C.CYAN}{B.V}{' ' * (width - 2)}{B.V}{C.RESET}"


def _box_bottom(width: int = BOX_WIDTH) -> str:
    """Bottom border."""
    return f"{C.CYAN}{B.BL}{B.H * (width - 2)}{B.BR}{C.RESET}"


def _kv_line(label: str, value: str, width: int = BOX_WIDTH) -> str:
    """Create a "label  value" row inside the box."""
    return _box_line(f"  {label:<{LABEL_WIDTH}}{C.WHITE}{value}{C.RESET}", width)


def _status_badge(status: str, is_ok: bool) -> str:
    """Green check or red cross followed by the status text."""
    if is_ok:
        return f"{C.BRIGHT_GREEN}{I.CHECK} {status}{C.RESET}"
    return f"{C.BRIGHT_RED}{I.CROSS} {status}{C.RESET}"


# ==============================================================================
# Formatting Helpers
# ==============================================================================


def format_rate(rate: float) -> str:
    """Format a 0..1 fraction as a percentage."""
    return f"{rate * 100:.1f}%"


def format_ms(value: float) -> str:
    """Format milliseconds, switching to seconds above one second."""
    if value >= 1000:
        return f"{value / 1000:.1f}s"
    return f"{value:.0f}ms"


def bar(count: int, maximum: int, length: int = 20) -> str:
    """Proportional bar for a count against the largest count shown."""
    if maximum <= 0 or count <= 0:
        return ""
    filled = max(1, round(count / maximum * length))
    return f"{C.BRIGHT_CYAN}{B.BAR * filled}{C.RESET}"
