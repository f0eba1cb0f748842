import re


def xpath_literal(value: str) -> str:
    """
    Quote a string for use inside an XPath expression.

    XPath 1.0 has no escape sequences, so a value holding both quote kinds
    is assembled with concat().

    Args:
        value: Raw attribute or text value

    Returns:
        XPath string literal
    """
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    pieces = []
    for i, part in enumerate(parts):
        if part:
            pieces.append(f'"{part}"')
        if i < len(parts) - 1:
            pieces.append("'\"'")
    return "concat(" + ", ".join(pieces) + ")"


def css_string(value: str) -> str:
    """
    Quote a string for use as a CSS attribute value.

    Args:
        value: Raw attribute value

    Returns:
        Double-quoted CSS string
    """
    escaped = value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\a ')
    return f'"{escaped}"'


def wrap_js_function(code: str) -> str:
    """
    Turn arbitrary script text into a function expression for page.evaluate.

    Function expressions are kept, an IIFE is unwrapped into its function,
    and plain statements are wrapped in an arrow function with ``return``
    inserted before a trailing call so its value comes back.

    Args:
        code: Script source as recorded or typed by the user

    Returns:
        Function expression source
    """
    code = code.strip()
    if code.startswith(("() =>", "async () =>", "function(", "function (", "async function")):
        return code

    if code.startswith("(() =>") and code.endswith((")()", ")();")):
        trimmed = code[:-1] if code.endswith(";") else code
        return trimmed[1:-3]

    lines = code.split("\n")
    last_line = lines[-1].strip()
    if last_line.endswith(("()", "();")) and not last_line.startswith("return "):
        lines[-1] = "return " + last_line.rstrip(";") + ";"
        code = "\n".join(lines)

    return "() => { " + code + " }"


def format_error_message(error: Exception, context: str = "") -> str:
    """
    Format an error message with context for better debugging.

    Args:
        error: The exception object
        context: Additional context about where the error occurred

    Returns:
        Formatted error message
    """
    error_type = type(error).__name__
    error_msg = str(error)

    if context:
        return f"[{error_type}] {context}: {error_msg}"
    return f"[{error_type}] {error_msg}"


def format_time_elapsed(seconds: float) -> str:
    """
    Format elapsed time in a human-readable format.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted time string
    """
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Cut text to ``max_length`` characters and append ``suffix`` when cut.

    Unlike a width-bounded truncation the suffix is added after the kept
    characters, matching how labels are shown in snapshots and enrichment.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


_ZERO_WIDTH = re.compile(r"[\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Strip zero-width characters and collapse whitespace."""
    return _WHITESPACE.sub(" ", _ZERO_WIDTH.sub("", text or "")).strip()
