"""Extraction of a :class:`StructuredRecord` from the assistant's summary.

The summary is plain text in which each field starts on a line of the form
``Label: value``. Values may continue over the following lines until the
next recognised label. Parsing is a left fold of :func:`reduce_line` over
the lines of the text, so it is deterministic and never raises: text
without any recognised label yields a record made only of placeholders.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Iterable, Mapping

from .models import OPTIONAL_FIELDS, StructuredRecord, SummaryField

DEFAULT_TITLE = "Incidencia Reportada"
TITLE_FALLBACK_LENGTH = 40
TRUNCATION_MARKER = "..."

FIELD_LABELS: Mapping[str, SummaryField] = MappingProxyType(
    {
        "titulosugerido": SummaryField.TITLE,
        "pasosparareproducir": SummaryField.STEPS_TO_REPRODUCE,
        "comportamientoesperado": SummaryField.EXPECTED_BEHAVIOR,
        "comportamientoactual": SummaryField.ACTUAL_BEHAVIOR,
        "impactodelproblema": SummaryField.IMPACT,
        "entornopotencial": SummaryField.ENVIRONMENT,
        "categoriasugerida": SummaryField.SUGGESTED_CATEGORY,
        "prioridadsugerida": SummaryField.PRIORITY,
        "nombredelreportador": SummaryField.REPORTER_NAME_HINT,
    }
)

# Whitespace plus the list/emphasis decoration models add despite being asked not to.
_LABEL_NOISE_RE = re.compile(r"[\s*_#•\-]+")

_RENDER_LABELS: tuple[tuple[SummaryField, str], ...] = (
    (SummaryField.TITLE, "Título"),
    (SummaryField.STEPS_TO_REPRODUCE, "Pasos para reproducir"),
    (SummaryField.EXPECTED_BEHAVIOR, "Comportamiento esperado"),
    (SummaryField.ACTUAL_BEHAVIOR, "Comportamiento actual"),
    (SummaryField.IMPACT, "Impacto"),
    (SummaryField.ENVIRONMENT, "Entorno"),
    (SummaryField.SUGGESTED_CATEGORY, "Categoría sugerida"),
    (SummaryField.PRIORITY, "Prioridad sugerida"),
)


@dataclass(slots=True, frozen=True)
class ScanState:
    """Immutable scanner state: fields filled so far, open field and its lines."""

    values: Mapping[SummaryField, str] = field(default_factory=lambda: MappingProxyType({}))
    cursor: SummaryField | None = None
    buffer: tuple[str, ...] = ()


def normalize_label(label: str) -> str:
    """Lower-case, strip accents and remove whitespace/decoration from a label."""

    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _LABEL_NOISE_RE.sub("", stripped.lower())


def match_field(line: str) -> tuple[SummaryField, str] | None:
    """Return the field a line opens and the text after its colon, if any."""

    label, _, remainder = line.partition(":")
    summary_field = FIELD_LABELS.get(normalize_label(label))
    if summary_field is None:
        return None
    return summary_field, remainder.strip()


def _flush(state: ScanState) -> Mapping[SummaryField, str]:
    if state.cursor is None:
        return state.values
    text = "\n".join(state.buffer).strip()
    if not text:
        return state.values
    # First value wins, except the reporter name which is always overwritable.
    if state.cursor in state.values and state.cursor is not SummaryField.REPORTER_NAME_HINT:
        return state.values
    values = dict(state.values)
    values[state.cursor] = text
    return MappingProxyType(values)


def reduce_line(state: ScanState, line: str) -> ScanState:
    matched = match_field(line)
    if matched is None:
        if state.cursor is None:
            return state
        return replace(state, buffer=state.buffer + (line,))

    summary_field, remainder = matched
    return ScanState(
        values=_flush(state),
        cursor=summary_field,
        buffer=(remainder,) if remainder else (),
    )


def scan(lines: Iterable[str]) -> Mapping[SummaryField, str]:
    state = ScanState()
    for line in lines:
        state = reduce_line(state, line)
    return _flush(state)


def parse_summary(text: str) -> StructuredRecord:
    """Parse summary text into a record; unmatched fields keep their placeholder."""

    values = scan((text or "").splitlines())
    return StructuredRecord(**{summary_field.value: value for summary_field, value in values.items()})


def fallback_title(existing_title: str | None, original_description: str | None) -> str:
    if existing_title and existing_title.strip():
        return existing_title.strip()
    description = (original_description or "").strip()
    if not description:
        return DEFAULT_TITLE
    if len(description) > TITLE_FALLBACK_LENGTH:
        return description[:TITLE_FALLBACK_LENGTH].rstrip() + TRUNCATION_MARKER
    return description


def finalize_record(
    record: StructuredRecord,
    *,
    reporter_name: str,
    existing_title: str | None = None,
    original_description: str | None = None,
) -> StructuredRecord:
    """Apply the title fallback chain and the reporter name default."""

    updates: dict[str, str] = {}
    if record.is_placeholder(SummaryField.TITLE):
        updates["title"] = fallback_title(existing_title, original_description)
    if record.is_placeholder(SummaryField.REPORTER_NAME_HINT) and reporter_name:
        updates["reporter_name_hint"] = reporter_name
    if not updates:
        return record
    return replace(record, **updates)


def extract_record(
    text: str,
    *,
    reporter_name: str,
    existing_title: str | None = None,
    original_description: str | None = None,
) -> StructuredRecord:
    return finalize_record(
        parse_summary(text),
        reporter_name=reporter_name,
        existing_title=existing_title,
        original_description=original_description,
    )


def render_record(record: StructuredRecord) -> str:
    """Render a record as labelled plain text for display and export."""

    blocks: list[str] = []
    for summary_field, label in _RENDER_LABELS:
        value = record.value(summary_field)
        if summary_field in OPTIONAL_FIELDS and record.is_placeholder(summary_field):
            continue
        if "\n" in value:
            blocks.append(f"{label}:\n{value}")
        else:
            blocks.append(f"{label}: {value}")
    return "\n".join(blocks)
