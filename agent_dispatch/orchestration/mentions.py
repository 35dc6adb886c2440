from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

MENTION_PATTERN = re.compile(r"@(?P<agent>[A-Za-z0-9_]+)(?::(?P<model>[A-Za-z0-9._-]+))?(?=\s|$)")


@dataclass(slots=True, frozen=True)
class TaskDescriptor:
    """One agent's share of a parsed instruction segment."""

    agent_ids: tuple[str, ...]
    task_text: str
    model_overrides: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    shared: bool = False

    def __post_init__(self) -> None:
        if not self.agent_ids:
            raise ValueError("TaskDescriptor requires at least one agent id")
        if not isinstance(self.model_overrides, MappingProxyType):
            object.__setattr__(self, "model_overrides", MappingProxyType(dict(self.model_overrides)))

    @property
    def agent_id(self) -> str:
        return self.agent_ids[0]

    def model_for(self, agent_id: str) -> str | None:
        return self.model_overrides.get(agent_id)


@dataclass(slots=True)
class ParsedMentions:
    tasks: list[TaskDescriptor] = field(default_factory=list)
    unmatched_text: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.tasks


@dataclass(slots=True)
class _Segment:
    mentions: list[tuple[str, str | None]]
    lines: list[str]


def _leading_run(line: str) -> tuple[list[tuple[str, str | None]], str] | None:
    """Split a line into its leading mention run and the remaining text.

    Returns ``None`` when the line does not start with a mention token.
    """
    position = len(line) - len(line.lstrip())
    mentions: list[tuple[str, str | None]] = []
    while True:
        match = MENTION_PATTERN.match(line, position)
        if match is None:
            break
        mentions.append((match.group("agent"), match.group("model")))
        position = match.end()
        while position < len(line) and line[position].isspace():
            position += 1
    if not mentions:
        return None
    return mentions, line[position:]


class MentionParser:
    """Turn a raw instruction into per-agent task descriptors.

    A line that starts with one or more ``@agent`` or ``@agent:model`` tokens opens a new
    segment. The rest of that line plus every following line without a leading run is the
    segment body, shared by each agent named in the run. Mentions further inside a body are
    plain text. Text before the first segment is reported as unmatched.
    """

    def __init__(self, known_agent_ids: Iterable[str]) -> None:
        self._known = frozenset(known_agent_ids)

    @property
    def known_agent_ids(self) -> frozenset[str]:
        return self._known

    def parse(self, raw: str | Sequence[str]) -> ParsedMentions:
        text = raw if isinstance(raw, str) else "\n".join(raw)
        result = ParsedMentions()
        if not text or not text.strip():
            return result

        preamble: list[str] = []
        segments: list[_Segment] = []
        for line in text.splitlines():
            split = _leading_run(line)
            if split is not None:
                mentions, remainder = split
                segments.append(_Segment(mentions=mentions, lines=[remainder]))
            elif segments:
                segments[-1].lines.append(line)
            else:
                preamble.append(line)

        leading = "\n".join(preamble).strip()
        if leading:
            result.unmatched_text.append(leading)

        for segment in segments:
            self._emit(segment, result)
        return result

    def _emit(self, segment: _Segment, result: ParsedMentions) -> None:
        body = "\n".join(segment.lines).strip()
        known: list[tuple[str, str | None]] = []
        seen: set[str] = set()
        for agent_id, model in segment.mentions:
            if agent_id in seen:
                continue
            seen.add(agent_id)
            if agent_id not in self._known:
                result.errors.append(f"Unknown agent: @{agent_id}")
                continue
            known.append((agent_id, model))

        if not body or not known:
            return

        shared = len(known) > 1
        for agent_id, model in known:
            overrides = {agent_id: model} if model else {}
            result.tasks.append(
                TaskDescriptor(
                    agent_ids=(agent_id,),
                    task_text=body,
                    model_overrides=overrides,
                    shared=shared,
                )
            )


def parse_mentions(raw: str | Sequence[str], known_agent_ids: Iterable[str]) -> ParsedMentions:
    return MentionParser(known_agent_ids).parse(raw)


__all__ = ["MENTION_PATTERN", "MentionParser", "ParsedMentions", "TaskDescriptor", "parse_mentions"]
