from __future__ import annotations

import pytest

from nerdy_k8s_cluster_backup.labels import (
    LabelSelectorError,
    format_label_selector,
    label_selector_as_selector,
    parse_selector,
    selector_as_label_selector,
)


def test_parse_selector_with_empty_text_matches_everything() -> None:
    selector = parse_selector("  ")

    assert selector.empty() is True
    assert selector.matches(None) is True
    assert str(selector) == ""


def test_parse_selector_with_equality_and_set_terms_matches_expected_labels() -> None:
    selector = parse_selector("app=web,tier in (frontend,edge),env!=dev")

    assert selector.matches({"app": "web", "tier": "edge", "env": "prod"}) is True
    assert selector.matches({"app": "web", "tier": "edge"}) is True
    assert selector.matches({"app": "web", "tier": "backend"}) is False
    assert selector.matches({"app": "web", "tier": "edge", "env": "dev"}) is False


def test_parse_selector_with_existence_terms_checks_key_presence() -> None:
    selector = parse_selector("backup,!skip")

    assert selector.matches({"backup": "true"}) is True
    assert selector.matches({"backup": "true", "skip": "yes"}) is False
    assert selector.matches({}) is False


def test_parse_selector_with_invalid_key_raises_label_selector_error() -> None:
    with pytest.raises(LabelSelectorError):
        parse_selector("bad key=value")


def test_label_selector_as_selector_with_none_matches_everything() -> None:
    assert label_selector_as_selector(None).matches({"anything": "goes"}) is True


def test_label_selector_as_selector_with_match_labels_and_expressions_combines_them() -> None:
    selector = label_selector_as_selector(
        {
            "matchLabels": {"app": "db"},
            "matchExpressions": [
                {"key": "tier", "operator": "NotIn", "values": ["cache"]},
                {"key": "owner", "operator": "Exists"},
            ],
        }
    )

    assert selector.matches({"app": "db", "owner": "team-a"}) is True
    assert selector.matches({"app": "db", "owner": "team-a", "tier": "cache"}) is False
    assert selector.matches({"app": "db"}) is False


def test_label_selector_as_selector_with_unknown_operator_raises_label_selector_error() -> None:
    with pytest.raises(LabelSelectorError, match="Matches"):
        label_selector_as_selector({"matchExpressions": [{"key": "app", "operator": "Matches", "values": ["x"]}]})


def test_label_selector_as_selector_with_non_mapping_raises_label_selector_error() -> None:
    with pytest.raises(LabelSelectorError):
        label_selector_as_selector(["app=web"])  # type: ignore[arg-type]


def test_format_label_selector_renders_sorted_requirements() -> None:
    assert format_label_selector({"matchLabels": {"tier": "web", "app": "shop"}}) == "app=shop,tier=web"


def test_selector_as_label_selector_with_mixed_terms_produces_equivalent_selector() -> None:
    selector = parse_selector("app=web,env!=dev,backup,!skip,tier in (a,b)")

    label_selector = selector_as_label_selector(selector)

    assert label_selector is not None
    assert label_selector["matchLabels"] == {"app": "web"}
    rebuilt = label_selector_as_selector(label_selector)
    for labels in (
        {"app": "web", "backup": "1", "tier": "a"},
        {"app": "web", "backup": "1", "tier": "a", "env": "dev"},
        {"app": "web", "tier": "b"},
        {"app": "web", "backup": "1", "tier": "c"},
    ):
        assert rebuilt.matches(labels) == selector.matches(labels)


def test_selector_as_label_selector_with_empty_selector_returns_none() -> None:
    assert selector_as_label_selector(parse_selector("")) is None
