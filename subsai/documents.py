"""SRT extraction and output utilities."""

from __future__ import annotations

import glob
import pathlib
import re
from typing import List, Sequence

from .errors import ExtractionError, SubsAIError
from .structures import Segment

BLOCK_PATTERN = re.compile(r"(\d+\n.* --> .*\n)((?:.+\n)+)")
TAG_PATTERN = re.compile(r"<[^>]*>")
STYLE_OVERRIDE_PATTERN = re.compile(r"\{[^}]+\}")
WHITESPACE_PATTERN = re.compile(r"\s+")
SOURCE_SUFFIX_PATTERN = re.compile(r"(?:\.en(?:-[a-z]+)?)?\.srt$", re.IGNORECASE)


def clean_content(text: str) -> str:
    """Collapse a block's lines to one and drop markup and style overrides."""

    without_tags = TAG_PATTERN.sub(" ", text)
    without_styles = STYLE_OVERRIDE_PATTERN.sub("", without_tags)
    return WHITESPACE_PATTERN.sub(" ", without_styles).strip()


def parse_srt(text: str) -> List[Segment]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff")
    if not normalized.endswith("\n"):
        normalized += "\n"
    return [
        Segment(header=match.group(1), content=clean_content(match.group(2)))
        for match in BLOCK_PATTERN.finditer(normalized)
    ]


def render_srt(segments: Sequence[Segment]) -> str:
    missing = [index for index, s in enumerate(segments) if s.translated_content is None]
    if missing:
        raise SubsAIError(
            f"Cannot render subtitles, {len(missing)} segments are untranslated."
        )
    return "\n\n".join(
        segment.header + (segment.translated_content or "") for segment in segments
    ) + "\n"


class SrtDocument:
    """A subtitle file on disk and the segments extracted from it."""

    def __init__(self, source_path: pathlib.Path) -> None:
        self.source_path = source_path

    def extract_segments(self) -> List[Segment]:
        try:
            content = self.source_path.read_text(encoding="utf-8-sig", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Could not read {self.source_path}: {exc}") from exc
        segments = parse_srt(content)
        if not segments:
            raise ExtractionError(f"No subtitle blocks found in {self.source_path}.")
        return segments

    def save(self, segments: Sequence[Segment], destination: pathlib.Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(render_srt(segments), encoding="utf-8")


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    """`movie.en.srt` becomes `movie.<language>.srt`."""

    name = SOURCE_SUFFIX_PATTERN.sub(f".{language}.srt", input_path.name)
    if name == input_path.name:
        name = f"{input_path.stem}.{language}.srt"
    return input_path.with_name(name)


def find_existing_translation(
    input_path: pathlib.Path,
    languages: Sequence[str],
) -> pathlib.Path | None:
    """Return a sibling subtitle already written in one of the languages."""

    base = SOURCE_SUFFIX_PATTERN.sub("", input_path.name)
    pattern = glob.escape(str(input_path.with_name(base))) + "*.srt"
    suffixes = tuple(f".{language}.srt" for language in languages)
    for candidate in sorted(glob.glob(pattern)):
        candidate_path = pathlib.Path(candidate)
        if candidate_path == input_path:
            continue
        if candidate_path.name.endswith(suffixes):
            return candidate_path
    return None
