from __future__ import annotations

from types import SimpleNamespace

from order_customizations.services.identity import (
    FilledCustomization,
    ItemRule,
    StoredCustomization,
    SubmittedIdentity,
    find_existing_customization,
    match_rule_and_component,
    match_rule_without_component,
    match_single_rule_candidate,
    match_title,
    matches_required_rule,
    normalize_rule_id,
    split_rule_id,
)


def _stored(record_id: str, payload: dict, rule_fk: str | None = None) -> StoredCustomization:
    record = SimpleNamespace(id=record_id, customization_rule_id=rule_fk)
    return StoredCustomization(record=record, payload=payload)


def _required(rule_id: str = "R1", component_id: str | None = "C1", name: str = "Frame Color") -> ItemRule:
    return ItemRule(
        rule_id=rule_id,
        name=name,
        type="MULTIPLE_CHOICE",
        component_id=component_id,
        item_id="I1",
        item_name="Frame",
    )


def test_split_and_normalize_rule_id():
    assert split_rule_id("R1:C1") == ("R1", "C1")
    assert split_rule_id("R1") == ("R1", None)
    assert split_rule_id(None) == (None, None)
    assert normalize_rule_id("R1:C1:extra") == "R1"


def test_stored_rule_ids_come_from_foreign_key_and_payload():
    stored = _stored("a", {"customizationRuleId": "R2:C9", "ruleId": "R3"}, rule_fk="R1")

    assert stored.rule_ids == {"R1", "R2", "R3"}


def test_submitted_component_falls_back_to_rule_qualifier():
    submitted = SubmittedIdentity.build(rule_id="R1:C1", component_id=None, title="Frame Color")

    assert submitted.rule_id == "R1"
    assert submitted.component_id == "C1"
    assert submitted.title == "frame color"


def test_rule_and_component_tier_prefers_matching_component():
    other = _stored("a", {"customizationRuleId": "R1", "componentId": "C2"})
    same = _stored("b", {"customizationRuleId": "R1", "componentId": "C1"})
    submitted = SubmittedIdentity.build(rule_id="R1", component_id="C1", title=None)

    assert match_rule_and_component(submitted, [other, same]) is same


def test_rule_without_component_tier_matches_legacy_record():
    legacy = _stored("a", {"customizationRuleId": "R1"})
    scoped = _stored("b", {"customizationRuleId": "R1", "componentId": "C2"})
    submitted = SubmittedIdentity.build(rule_id="R1", component_id="C1", title=None)

    assert match_rule_and_component(submitted, [legacy, scoped]) is None
    assert match_rule_without_component(submitted, [legacy, scoped]) is legacy


def test_rule_without_component_tier_needs_submitted_component():
    legacy = _stored("a", {"customizationRuleId": "R1"})
    submitted = SubmittedIdentity.build(rule_id="R1", component_id=None, title=None)

    assert match_rule_without_component(submitted, [legacy]) is None


def test_single_candidate_tier_only_when_unambiguous():
    first = _stored("a", {"customizationRuleId": "R1", "componentId": "C1"})
    second = _stored("b", {"customizationRuleId": "R1", "componentId": "C2"})
    submitted = SubmittedIdentity.build(rule_id="R1", component_id=None, title=None)

    assert match_single_rule_candidate(submitted, [first]) is first
    assert match_single_rule_candidate(submitted, [first, second]) is None


def test_title_tier_is_case_insensitive_and_respects_components():
    stored = _stored("a", {"title": "Nome na Capa", "componentId": "C1"})

    assert match_title(SubmittedIdentity.build(rule_id=None, component_id=None, title="nome na capa"), [stored]) is stored
    assert match_title(SubmittedIdentity.build(rule_id=None, component_id="C2", title="Nome na capa"), [stored]) is None


def test_find_existing_returns_none_for_new_component():
    stored = _stored("a", {"customizationRuleId": "R1", "componentId": "C1", "title": "Photo"})
    submitted = SubmittedIdentity.build(rule_id="R1:C2", component_id=None, title="Photo")

    assert find_existing_customization(submitted, [stored]) is None


def test_find_existing_walks_tiers_in_order():
    by_title = _stored("a", {"title": "Photo"})
    by_rule = _stored("b", {"customizationRuleId": "R1", "componentId": "C1"})
    submitted = SubmittedIdentity.build(rule_id="R1", component_id="C1", title="Photo")

    assert find_existing_customization(submitted, [by_title, by_rule]) is by_rule


def test_matches_required_rule_by_id_and_component():
    filled = FilledCustomization(customization_id="x", rule_id="R1", component_id="C1", labels=())

    assert matches_required_rule(filled, _required(component_id="C1"))
    assert not matches_required_rule(filled, _required(component_id="C2"))
    assert matches_required_rule(filled, _required(component_id=None))


def test_matches_required_rule_falls_back_to_name():
    filled = FilledCustomization(customization_id="x", rule_id=None, component_id=None, labels=("FRAME COLOR",))

    assert matches_required_rule(filled, _required())
    assert not matches_required_rule(filled, _required(name="Engraving"))
