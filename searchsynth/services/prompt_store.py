"""Prompt catalog backed by `searchsynth/prompts/prompts.json`.

Keys are dotted paths (`"summary.chunk_system"`); values are `string.Template`
strings rendered with `$name` placeholders. The file is re-read whenever its
mtime changes so prompts can be edited on a running server.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

_cache: tuple[int, dict[str, Any]] | None = None


def _catalog() -> dict[str, Any]:
    global _cache
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _cache is not None and _cache[0] == mtime_ns:
        return _cache[1]

    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Prompt catalog {PROMPTS_PATH} must hold a JSON object")
    _cache = (mtime_ns, payload)
    return payload


def get_template(key: str) -> Template:
    node: Any = _catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return Template(node)


def render_prompt(key: str, **values: Any) -> str:
    try:
        return get_template(key).substitute(**values)
    except KeyError as exc:
        if str(exc.args[0]).startswith("Prompt key"):
            raise
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    global _cache
    _cache = None
