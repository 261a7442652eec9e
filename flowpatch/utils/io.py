# utils/io.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Tuple, Union

PathLike = Union[str, Path]


def to_path(p: PathLike) -> Path:
    """Convert string-like to pathlib.Path."""
    return p if isinstance(p, Path) else Path(p)


def ensure_parent(path: PathLike) -> Path:
    """Ensure parent directory exists for a file path."""
    p = to_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def read_json(path: PathLike) -> Any:
    """Load JSON file with UTF-8."""
    with to_path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def dumps(data: Any, indent: int = 2) -> str:
    return json.dumps(data, ensure_ascii=False, indent=indent)


def write_json(path: PathLike, data: Any, indent: int = 2) -> Path:
    """Write JSON atomically (via temp file then replace), pretty-formatted."""
    p = ensure_parent(path)
    tmp = p.with_suffix(p.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(dumps(data, indent=indent))
    tmp.replace(p)
    return p


def load_prompts_file(path: PathLike) -> List[Tuple[str, str]]:
    """
    Parse a prompts file made of blank-line separated blocks:

        CASE_01
        fetch users from https://api.example.com/users

        CASE_02
        post to slack when a webhook arrives
    """
    text = to_path(path).read_text(encoding="utf-8").strip()
    blocks = [b.strip() for b in text.split("\n\n") if b.strip()]
    pairs: List[Tuple[str, str]] = []
    for blk in blocks:
        lines = [l.strip() for l in blk.splitlines() if l.strip()]
        if not lines:
            continue
        case_id = lines[0]
        prompt = " ".join(lines[1:]) if len(lines) > 1 else ""
        pairs.append((case_id, prompt))
    return pairs
