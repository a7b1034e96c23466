"""Runtime configuration helpers for the image handler."""
from __future__ import annotations

import os
from typing import Optional

DEFAULT_MAX_PAYLOAD_BYTES = 6 * 1024 * 1024


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def get_max_payload_bytes() -> int:
    raw = _get_env("IMAGE_HANDLER_MAX_PAYLOAD_BYTES")
    if not raw:
        return DEFAULT_MAX_PAYLOAD_BYTES
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_PAYLOAD_BYTES
    return value if value > 0 else DEFAULT_MAX_PAYLOAD_BYTES


def get_aws_region() -> Optional[str]:
    return _get_env("AWS_REGION") or _get_env("AWS_DEFAULT_REGION")


def get_watermark_font_path() -> Optional[str]:
    return _get_env("IMAGE_HANDLER_WATERMARK_FONT")
