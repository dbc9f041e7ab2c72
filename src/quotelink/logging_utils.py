from __future__ import annotations

from copy import copy, deepcopy
from typing import Any
from urllib.parse import parse_qsl, unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

__all__ = [
    "Utf8AccessFormatter",
    "build_uvicorn_log_config",
    "debug_log",
    "decode_request_target",
    "set_debug_logging",
]

_DEBUG_LOG = False

# Query values shown quoted so " & " inside a quote expression stays readable.
_QUOTED_PARAMS = ("quote", "ref")


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_log(component: str, message: str) -> None:
    if _DEBUG_LOG:
        print(f"[quotelink {component} debug] {message}")


def decode_request_target(target: str) -> str:
    """
    Readable form of a request path such as `/api/quote?ref=1%3A1&quote=...`.

    The path and every query value are percent-decoded; `quote` and `ref`
    values are wrapped in double quotes.
    """
    path, sep, query = target.partition("?")
    decoded_path = unquote(path, encoding="utf-8", errors="replace")
    if not sep:
        return decoded_path
    params = []
    for key, value in parse_qsl(query, keep_blank_values=True, encoding="utf-8", errors="replace"):
        if key in _QUOTED_PARAMS:
            params.append(f'{key}="{value}"')
        else:
            params.append(f"{key}={value}")
    return f"{decoded_path}?{'&'.join(params)}"


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Access log formatter that prints quote and reference query strings decoded."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if not isinstance(args, tuple) or len(args) != 5 or not isinstance(args[2], str):
            return super().formatMessage(record)
        client_addr, method, full_path, http_version, status_code = args
        new_record = copy(record)
        new_record.args = (client_addr, method, decode_request_target(full_path), http_version, status_code)
        return super().formatMessage(new_record)


def build_uvicorn_log_config() -> dict[str, Any]:
    """Return a uvicorn logging config whose access lines keep Greek and Hebrew readable."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "quotelink.logging_utils.Utf8AccessFormatter"
    return config
