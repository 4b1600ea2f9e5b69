"""Utility modules"""
from letterflow.utils.logger import get_logger, setup_logger
from letterflow.utils.validators import (
    extract_markdown_field,
    sanitize_filename,
    strip_markdown_link,
    unescape_newlines,
    validate_email,
)

__all__ = [
    "get_logger",
    "setup_logger",
    "extract_markdown_field",
    "sanitize_filename",
    "strip_markdown_link",
    "unescape_newlines",
    "validate_email",
]
