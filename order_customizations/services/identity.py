"""Identity matching between submitted and stored customizations.

A rule id alone does not identify a customization slot once rules are scoped to
repeatable components, so matching walks a ranked list of tiers and takes the
first hit. Each tier is a plain function so it can be exercised on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

RULE_QUALIFIER_SEPARATOR = ":"
_PAYLOAD_RULE_KEYS = ("customizationRuleId", "customization_id", "ruleId")


def split_rule_id(rule_id: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split ``"<rule>:<component>"`` into its rule and qualifier parts."""
    if not rule_id:
        return None, None
    head, _, tail = str(rule_id).partition(RULE_QUALIFIER_SEPARATOR)
    return (head.strip() or None), (tail.strip() or None)


def normalize_rule_id(rule_id: Optional[str]) -> Optional[str]:
    return split_rule_id(rule_id)[0]


def _normalize_title(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip().casefold() or None


@dataclass
class StoredCustomization:
    record: Any
    payload: dict[str, Any]
    rule_ids: set[str] = field(init=False)

    def __post_init__(self) -> None:
        raw_ids = [getattr(self.record, "customization_rule_id", None)]
        raw_ids.extend(self.payload.get(key) for key in _PAYLOAD_RULE_KEYS)
        self.rule_ids = {
            normalized
            for normalized in (normalize_rule_id(raw) for raw in raw_ids if isinstance(raw, str))
            if normalized
        }

    @property
    def component_id(self) -> Optional[str]:
        value = self.payload.get("componentId")
        return value if isinstance(value, str) and value else None

    @property
    def title(self) -> Optional[str]:
        return _normalize_title(self.payload.get("title"))


@dataclass(frozen=True)
class SubmittedIdentity:
    rule_id: Optional[str]
    component_id: Optional[str]
    title: Optional[str]

    @classmethod
    def build(
        cls, *, rule_id: Optional[str], component_id: Optional[str], title: Optional[str]
    ) -> "SubmittedIdentity":
        rule, qualifier = split_rule_id(rule_id)
        return cls(rule_id=rule, component_id=component_id or qualifier, title=_normalize_title(title))


Tier = Callable[[SubmittedIdentity, Sequence[StoredCustomization]], Optional[StoredCustomization]]


def _same_rule(submitted: SubmittedIdentity, candidates: Sequence[StoredCustomization]) -> list[StoredCustomization]:
    if not submitted.rule_id:
        return []
    return [candidate for candidate in candidates if submitted.rule_id in candidate.rule_ids]


def match_rule_and_component(
    submitted: SubmittedIdentity, candidates: Sequence[StoredCustomization]
) -> Optional[StoredCustomization]:
    for candidate in _same_rule(submitted, candidates):
        if candidate.component_id == submitted.component_id:
            return candidate
    return None


def match_rule_without_component(
    submitted: SubmittedIdentity, candidates: Sequence[StoredCustomization]
) -> Optional[StoredCustomization]:
    # Records saved before component scoping carry no componentId.
    if not submitted.component_id:
        return None
    for candidate in _same_rule(submitted, candidates):
        if candidate.component_id is None:
            return candidate
    return None


def match_single_rule_candidate(
    submitted: SubmittedIdentity, candidates: Sequence[StoredCustomization]
) -> Optional[StoredCustomization]:
    if submitted.component_id:
        return None
    same_rule = _same_rule(submitted, candidates)
    return same_rule[0] if len(same_rule) == 1 else None


def match_title(
    submitted: SubmittedIdentity, candidates: Sequence[StoredCustomization]
) -> Optional[StoredCustomization]:
    if not submitted.title:
        return None
    for candidate in candidates:
        if candidate.title != submitted.title:
            continue
        if submitted.component_id and candidate.component_id and candidate.component_id != submitted.component_id:
            continue
        return candidate
    return None


MATCH_TIERS: tuple[Tier, ...] = (
    match_rule_and_component,
    match_rule_without_component,
    match_single_rule_candidate,
    match_title,
)


def find_existing_customization(
    submitted: SubmittedIdentity,
    candidates: Sequence[StoredCustomization],
    tiers: Sequence[Tier] = MATCH_TIERS,
) -> Optional[StoredCustomization]:
    for tier in tiers:
        match = tier(submitted, candidates)
        if match is not None:
            return match
    return None


@dataclass(frozen=True)
class ItemRule:
    rule_id: str
    name: str
    type: str
    component_id: Optional[str]
    item_id: str
    item_name: str
    is_additional: bool = False
    is_required: bool = True


@dataclass(frozen=True)
class FilledCustomization:
    customization_id: str
    rule_id: Optional[str]
    component_id: Optional[str]
    labels: tuple[str, ...]


def matches_required_rule(filled: FilledCustomization, required: ItemRule) -> bool:
    """Id match (component must agree when both carry one), else name/label match.

    The name fallback can pair two different rules that share a display name.
    """
    if filled.rule_id and filled.rule_id == required.rule_id:
        if filled.component_id and required.component_id:
            return filled.component_id == required.component_id
        return True
    rule_name = _normalize_title(required.name)
    return bool(rule_name) and rule_name in {_normalize_title(label) for label in filled.labels}
