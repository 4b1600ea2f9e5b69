"""
Input parsing and validation utilities
"""
import re
from typing import Optional

_MARKDOWN_LINK = re.compile(r"\[([^\]]*)\]\(")


def extract_markdown_field(text: str, prefix: str) -> Optional[str]:
    """
    Extract the value of a `**Label**: value` line from generated markdown

    Args:
        text: Markdown document (e.g. a dossier)
        prefix: Line prefix including the label, e.g. "**Email**:"

    Returns:
        Stripped value of the last matching line, or None if absent
    """
    value = None
    for line in (text or "").splitlines():
        if line.startswith(prefix):
            value = line[len(prefix):].strip()
    return value


def strip_markdown_link(value: Optional[str]) -> Optional[str]:
    """Return the link text of `[text](url)`, or the value unchanged"""
    if not value:
        return value
    match = _MARKDOWN_LINK.search(value)
    if match:
        return match.group(1)
    return value


def unescape_newlines(text: str) -> str:
    """Turn literal `\\n` sequences into real line breaks"""
    return text.replace("\\n", "\n")


def validate_email(email: str) -> bool:
    """
    Validate email format

    Args:
        email: Email address to validate

    Returns:
        True if valid email format
    """
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def sanitize_filename(text: str) -> str:
    """Replace characters that are unsafe in file names"""
    return re.sub(r"[^A-Za-z0-9._-]+", "_", text).strip("_") or "unnamed"
