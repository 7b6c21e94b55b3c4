"""Fixed single-line record grammars for worktodo and results files."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RecordGrammar:
    """Patterns that identify assignment lines, result lines and their exponent key.

    An assignment is a labeled type followed by four comma-separated fields, the
    last of which is numeric, for example ``Factor=AID,332192897,73,74``.
    """

    name: str
    assignment_pattern: re.Pattern[str]
    result_pattern: re.Pattern[str]
    key_pattern: re.Pattern[str]
    adjusts_target: bool = False

    def find_assignments(self, text: str) -> list[str]:
        return [match.group(0) for match in self.assignment_pattern.finditer(text)]

    def find_results(self, text: str) -> list[str]:
        return [match.group(0) for match in self.result_pattern.finditer(text)]

    def result_key(self, line: str) -> str | None:
        match = self.key_pattern.search(line)
        if match is None:
            return None
        return match.group(1)


TF_GRAMMAR = RecordGrammar(
    name="tf",
    assignment_pattern=re.compile(r"(Factor)=.*(,[0-9]+){3}"),
    result_pattern=re.compile(r".*M([0-9]+) .*"),
    key_pattern=re.compile(r"M([0-9]+)"),
    adjusts_target=True,
)

LL_GRAMMAR = RecordGrammar(
    name="ll",
    assignment_pattern=re.compile(r"(DoubleCheck|Test)=.*(,[0-9]+){3}"),
    result_pattern=re.compile(r".*M\( ([0-9]+) \).*"),
    key_pattern=re.compile(r"M\( ([0-9]+) \)"),
)

GRAMMARS: dict[str, RecordGrammar] = {
    TF_GRAMMAR.name: TF_GRAMMAR,
    LL_GRAMMAR.name: LL_GRAMMAR,
}


def grammar_for(kind: str) -> RecordGrammar:
    try:
        return GRAMMARS[kind]
    except KeyError as error:
        raise ValueError(f"No record grammar for device kind {kind!r}") from error


def normalize_newlines(text: str) -> str:
    """Turn CR and CRLF line endings into LF (CRLF becomes a blank line, which is harmless)."""

    return text.replace("\r", "\n")


def dedupe_lines(lines: list[str], *, existing: list[str] | None = None) -> list[str]:
    """Drop exact duplicate lines, keeping first-seen order."""

    seen: set[str] = set(existing or ())
    unique: list[str] = []
    for line in lines:
        if line in seen:
            continue
        seen.add(line)
        unique.append(line)
    return unique


def raise_target(records: list[str], target: int) -> list[str]:
    """Raise the trailing bit-level field of each record to ``target``; never lower it."""

    raised: list[str] = []
    for record in records:
        head, _, level = record.rpartition(",")
        if head and level.isdigit() and int(level) < target:
            raised.append(f"{head},{target}")
        else:
            raised.append(record)
    return raised
