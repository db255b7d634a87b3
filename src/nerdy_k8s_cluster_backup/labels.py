from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
import re

OPERATOR_EQUALS = "="
OPERATOR_NOT_EQUALS = "!="
OPERATOR_IN = "in"
OPERATOR_NOT_IN = "notin"
OPERATOR_EXISTS = "exists"
OPERATOR_DOES_NOT_EXIST = "!"

_SET_EXPRESSION = re.compile(r"^(?P<key>\S+)\s+(?P<operator>in|notin)\s*\((?P<values>[^()]*)\)$")
_QUALIFIED_NAME = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_LABEL_VALUE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")
_STRUCTURED_OPERATORS = {
    "In": OPERATOR_IN,
    "NotIn": OPERATOR_NOT_IN,
    "Exists": OPERATOR_EXISTS,
    "DoesNotExist": OPERATOR_DOES_NOT_EXIST,
}


class LabelSelectorError(ValueError):
    """Raised when a label selector cannot be parsed."""


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator == OPERATOR_EXISTS:
            return present
        if self.operator == OPERATOR_DOES_NOT_EXIST:
            return not present
        if self.operator == OPERATOR_EQUALS:
            return present and labels[self.key] == self.values[0]
        if self.operator == OPERATOR_NOT_EQUALS:
            return not present or labels[self.key] != self.values[0]
        if self.operator == OPERATOR_IN:
            return present and labels[self.key] in self.values
        if self.operator == OPERATOR_NOT_IN:
            return not present or labels[self.key] not in self.values
        return False

    def __str__(self) -> str:
        if self.operator == OPERATOR_EXISTS:
            return self.key
        if self.operator == OPERATOR_DOES_NOT_EXIST:
            return f"!{self.key}"
        if self.operator in {OPERATOR_EQUALS, OPERATOR_NOT_EQUALS}:
            return f"{self.key}{self.operator}{self.values[0]}"
        return f"{self.key} {self.operator} ({','.join(self.values)})"


@dataclass(frozen=True)
class Selector:
    requirements: tuple[Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(requirement.matches(labels) for requirement in self.requirements)

    def empty(self) -> bool:
        return not self.requirements

    def __str__(self) -> str:
        return ",".join(str(requirement) for requirement in self.requirements)


def everything() -> Selector:
    return Selector()


def parse_selector(text: str) -> Selector:
    stripped = (text or "").strip()
    if not stripped:
        return everything()

    requirements = [_parse_requirement(term) for term in _split_terms(stripped)]
    return Selector(tuple(sorted(requirements, key=lambda requirement: requirement.key)))


def label_selector_as_selector(label_selector: Mapping[str, Any] | None) -> Selector:
    if label_selector is None:
        return everything()
    if not isinstance(label_selector, Mapping):
        raise LabelSelectorError(f"label selector must be a mapping, got {type(label_selector).__name__}")

    match_labels = label_selector.get("matchLabels") or label_selector.get("match_labels") or {}
    match_expressions = label_selector.get("matchExpressions") or label_selector.get("match_expressions") or []
    if not isinstance(match_labels, Mapping):
        raise LabelSelectorError("matchLabels must be a mapping of label keys to values")
    if not isinstance(match_expressions, list):
        raise LabelSelectorError("matchExpressions must be a list")

    requirements: list[Requirement] = []
    for key, value in match_labels.items():
        requirements.append(_requirement(str(key), OPERATOR_EQUALS, (str(value),)))

    for expression in match_expressions:
        if not isinstance(expression, Mapping):
            raise LabelSelectorError("each matchExpressions entry must be a mapping")
        key = str(expression.get("key") or "")
        raw_operator = str(expression.get("operator") or "")
        operator = _STRUCTURED_OPERATORS.get(raw_operator)
        if operator is None:
            raise LabelSelectorError(f"{raw_operator!r} is not a valid label selector operator")
        values = tuple(str(value) for value in expression.get("values") or ())
        requirements.append(_requirement(key, operator, values))

    return Selector(tuple(sorted(requirements, key=lambda requirement: requirement.key)))


def format_label_selector(label_selector: Mapping[str, Any] | None) -> str:
    return str(label_selector_as_selector(label_selector))


def selector_as_label_selector(selector: Selector) -> dict[str, Any] | None:
    """Convert a parsed selector into the matchLabels/matchExpressions shape; None when empty."""
    if selector.empty():
        return None

    structured = {value: key for key, value in _STRUCTURED_OPERATORS.items()}
    match_labels: dict[str, str] = {}
    match_expressions: list[dict[str, Any]] = []
    for requirement in selector.requirements:
        if requirement.operator == OPERATOR_EQUALS and requirement.key not in match_labels:
            match_labels[requirement.key] = requirement.values[0]
            continue
        if requirement.operator == OPERATOR_EQUALS:
            operator, values = "In", list(requirement.values)
        elif requirement.operator == OPERATOR_NOT_EQUALS:
            operator, values = "NotIn", list(requirement.values)
        else:
            operator, values = structured[requirement.operator], list(requirement.values)

        expression: dict[str, Any] = {"key": requirement.key, "operator": operator}
        if values:
            expression["values"] = values
        match_expressions.append(expression)

    label_selector: dict[str, Any] = {}
    if match_labels:
        label_selector["matchLabels"] = match_labels
    if match_expressions:
        label_selector["matchExpressions"] = match_expressions
    return label_selector


def _split_terms(text: str) -> list[str]:
    terms: list[str] = []
    depth = 0
    current: list[str] = []
    for character in text:
        if character == "(":
            depth += 1
        elif character == ")":
            depth -= 1
            if depth < 0:
                raise LabelSelectorError(f"unbalanced parentheses in selector {text!r}")
        if character == "," and depth == 0:
            terms.append("".join(current))
            current = []
            continue
        current.append(character)
    if depth != 0:
        raise LabelSelectorError(f"unbalanced parentheses in selector {text!r}")
    terms.append("".join(current))
    return terms


def _parse_requirement(term: str) -> Requirement:
    stripped = term.strip()
    if not stripped:
        raise LabelSelectorError("found an empty requirement in selector")

    set_match = _SET_EXPRESSION.match(stripped)
    if set_match:
        values = tuple(value.strip() for value in set_match.group("values").split(",") if value.strip())
        return _requirement(set_match.group("key"), set_match.group("operator"), values)

    if stripped.startswith("!"):
        return _requirement(stripped[1:].strip(), OPERATOR_DOES_NOT_EXIST, ())

    for token, operator in (("!=", OPERATOR_NOT_EQUALS), ("==", OPERATOR_EQUALS), ("=", OPERATOR_EQUALS)):
        if token in stripped:
            key, _, value = stripped.partition(token)
            return _requirement(key.strip(), operator, (value.strip(),))

    return _requirement(stripped, OPERATOR_EXISTS, ())


def _requirement(key: str, operator: str, values: tuple[str, ...]) -> Requirement:
    _validate_key(key)
    if operator in {OPERATOR_EQUALS, OPERATOR_NOT_EQUALS}:
        if len(values) != 1:
            raise LabelSelectorError(f"operator {operator!r} for key {key!r} requires exactly one value")
    elif operator in {OPERATOR_IN, OPERATOR_NOT_IN}:
        if not values:
            raise LabelSelectorError(f"operator {operator!r} for key {key!r} requires at least one value")
    elif values:
        raise LabelSelectorError(f"operator {operator!r} for key {key!r} does not accept values")

    for value in values:
        if len(value) > 63 or not _LABEL_VALUE.match(value):
            raise LabelSelectorError(f"invalid label value {value!r} for key {key!r}")

    return Requirement(key=key, operator=operator, values=tuple(sorted(set(values))) if len(values) > 1 else values)


def _validate_key(key: str) -> None:
    if not key:
        raise LabelSelectorError("label selector key must not be empty")

    prefix, separator, name = key.rpartition("/")
    if separator and (not prefix or len(prefix) > 253 or not _DNS_SUBDOMAIN.match(prefix)):
        raise LabelSelectorError(f"invalid label key prefix in {key!r}")
    if len(name) > 63 or not _QUALIFIED_NAME.match(name):
        raise LabelSelectorError(f"invalid label key {key!r}")
