"""Append-only corpus of exchanges that kept failing the count check."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


@dataclass
class ErrorRecord:
    """A prompt/input/output triple kept for offline review."""

    prompt: str
    input: str
    output: str

    def to_messages(self) -> Dict[str, Any]:
        return {
            "messages": [
                {"role": "system", "content": self.prompt},
                {"role": "user", "content": self.input},
                {"role": "assistant", "content": self.output},
            ]
        }


class ErrorCorpus:
    """Writes one JSON line per record, in chat fine-tuning shape."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.count = 0

    def append(self, record: ErrorRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.to_messages(), ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        self.count += 1
