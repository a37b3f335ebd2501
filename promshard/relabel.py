"""Prometheus style relabelling of label sets."""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Iterable, Mapping, Optional

_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_RELABEL_TARGET = re.compile(r"(?:(?:[a-zA-Z_]|\$(?:\{\w+\}|\w+))+\w*)+")

_DEFAULT_SEPARATOR = ";"
_DEFAULT_REGEX = "(.*)"
_DEFAULT_REPLACEMENT = "$1"

_KEYS = {
    "source_labels",
    "separator",
    "regex",
    "modulus",
    "target_label",
    "replacement",
    "action",
}


class RelabelAction(str, Enum):
    """What a relabel rule does with a label set."""

    REPLACE = "replace"
    KEEP = "keep"
    DROP = "drop"
    HASHMOD = "hashmod"
    LABELMAP = "labelmap"
    LABELDROP = "labeldrop"
    LABELKEEP = "labelkeep"


def _is_label_name(name: str) -> bool:
    return _LABEL_NAME.fullmatch(name) is not None


@dataclass
class RelabelConfig:
    """One relabel rule; the regular expression is anchored at both ends."""

    source_labels: list[str] = field(default_factory=list)
    separator: str = _DEFAULT_SEPARATOR
    regex: str = _DEFAULT_REGEX
    modulus: int = 0
    target_label: str = ""
    replacement: str = _DEFAULT_REPLACEMENT
    action: RelabelAction = RelabelAction.REPLACE

    def __post_init__(self) -> None:
        if not isinstance(self.action, RelabelAction):
            if not self.action:
                raise ValueError("relabel action cannot be empty")
            try:
                self.action = RelabelAction(str(self.action).lower())
            except ValueError:
                raise ValueError(f"unknown relabel action {self.action!r}") from None
        try:
            self._regex
        except re.error as exc:
            raise ValueError(f"invalid relabel regex {self.regex!r}: {exc}") from exc
        self._validate()

    @cached_property
    def _regex(self) -> "re.Pattern[str]":
        return re.compile(f"(?:{self.regex})")

    def _validate(self) -> None:
        action = self.action
        for name in self.source_labels:
            if not _is_label_name(name):
                raise ValueError(f"{name!r} is not a valid label name")
        if action is RelabelAction.HASHMOD and self.modulus == 0:
            raise ValueError("relabel configuration for hashmod requires non-zero modulus")
        if action in (RelabelAction.REPLACE, RelabelAction.HASHMOD) and not self.target_label:
            raise ValueError(
                f"relabel configuration for {action.value} action requires 'target_label' value"
            )
        if action is RelabelAction.REPLACE and not _RELABEL_TARGET.fullmatch(self.target_label):
            raise ValueError(
                f"{self.target_label!r} is invalid 'target_label' for {action.value} action"
            )
        if action is RelabelAction.LABELMAP and not _RELABEL_TARGET.fullmatch(self.replacement):
            raise ValueError(
                f"{self.replacement!r} is invalid 'replacement' for {action.value} action"
            )
        if action is RelabelAction.HASHMOD and not _is_label_name(self.target_label):
            raise ValueError(
                f"{self.target_label!r} is invalid 'target_label' for {action.value} action"
            )
        if action in (RelabelAction.LABELDROP, RelabelAction.LABELKEEP) and (
            self.source_labels
            or self.target_label
            or self.modulus
            or self.separator != _DEFAULT_SEPARATOR
            or self.replacement != _DEFAULT_REPLACEMENT
        ):
            raise ValueError(f"{action.value} action requires only 'regex', and no other fields")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelabelConfig":
        """Build a rule from its YAML mapping form."""
        if not isinstance(data, Mapping):
            raise ValueError("relabel config must be a mapping")
        unknown = set(data) - _KEYS
        if unknown:
            raise ValueError(f"unknown relabel config fields: {', '.join(sorted(map(str, unknown)))}")
        regex = data.get("regex", _DEFAULT_REGEX)
        return cls(
            source_labels=[str(name) for name in data.get("source_labels") or []],
            separator=str(data.get("separator", _DEFAULT_SEPARATOR)),
            regex="" if regex is None else str(regex),
            modulus=int(data.get("modulus") or 0),
            target_label=str(data.get("target_label") or ""),
            replacement=str(data.get("replacement", _DEFAULT_REPLACEMENT)),
            action=data.get("action", RelabelAction.REPLACE.value) or "",
        )


def _extract(template: str, start: int) -> Optional[tuple[str, int]]:
    """Read a ``name`` or ``{name}`` reference; return it and the next index."""
    pos = start
    brace = pos < len(template) and template[pos] == "{"
    if brace:
        pos += 1
    begin = pos
    while pos < len(template) and (template[pos].isalnum() or template[pos] == "_"):
        pos += 1
    if pos == begin:
        return None
    name = template[begin:pos]
    if brace:
        if pos >= len(template) or template[pos] != "}":
            return None
        pos += 1
    return name, pos


def _group_text(match: "re.Match[str]", name: str) -> str:
    if name.isdigit() and not (name[0] == "0" and len(name) > 1):
        number = int(name)
        if number <= match.re.groups:
            return match.group(number) or ""
        return ""
    index = match.re.groupindex.get(name)
    if index is None:
        return ""
    return match.group(index) or ""


def _expand(template: str, match: "re.Match[str]") -> str:
    """Substitute ``$n``, ``${n}`` and ``$name`` references from ``match``."""
    out = []
    pos = 0
    while pos < len(template):
        char = template[pos]
        if char != "$":
            out.append(char)
            pos += 1
            continue
        pos += 1
        if pos < len(template) and template[pos] == "$":
            out.append("$")
            pos += 1
            continue
        extracted = _extract(template, pos)
        if extracted is None:
            out.append("$")
            continue
        name, pos = extracted
        out.append(_group_text(match, name))
    return "".join(out)


def _set(labels: dict[str, str], name: str, value: str) -> None:
    if value:
        labels[name] = value
    else:
        labels.pop(name, None)


def _apply(labels: Mapping[str, str], cfg: RelabelConfig) -> Optional[dict[str, str]]:
    value = cfg.separator.join(labels.get(name, "") for name in cfg.source_labels)
    out = dict(labels)
    regex = cfg._regex
    action = cfg.action

    if action is RelabelAction.DROP:
        if regex.fullmatch(value):
            return None
    elif action is RelabelAction.KEEP:
        if not regex.fullmatch(value):
            return None
    elif action is RelabelAction.REPLACE:
        match = regex.fullmatch(value)
        if match is not None:
            target = _expand(cfg.target_label, match)
            if _is_label_name(target):
                _set(out, target, _expand(cfg.replacement, match))
    elif action is RelabelAction.HASHMOD:
        digest = hashlib.md5(value.encode()).digest()
        _set(out, cfg.target_label, str(int.from_bytes(digest[8:], "big") % cfg.modulus))
    elif action is RelabelAction.LABELMAP:
        for name, label_value in labels.items():
            match = regex.fullmatch(name)
            if match is not None:
                _set(out, _expand(cfg.replacement, match), label_value)
    elif action is RelabelAction.LABELDROP:
        for name in labels:
            if regex.fullmatch(name):
                out.pop(name, None)
    elif action is RelabelAction.LABELKEEP:
        for name in labels:
            if not regex.fullmatch(name):
                out.pop(name, None)

    return {name: val for name, val in out.items() if val}


def process(
    labels: Mapping[str, str], configs: Iterable[RelabelConfig]
) -> Optional[dict[str, str]]:
    """Apply ``configs`` in order; return the new labels or None if dropped."""
    current: Optional[dict[str, str]] = {name: val for name, val in labels.items() if val}
    for cfg in configs:
        current = _apply(current, cfg)
        if current is None:
            return None
    return current