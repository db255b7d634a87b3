from __future__ import annotations

from nerdy_k8s_cluster_backup.cohabitation import (
    CohabitationTable,
    default_cohabitating_resources,
    new_cohabitating_resource,
)


def test_claim_with_first_group_wins_and_later_group_is_skipped() -> None:
    table = CohabitationTable()

    assert table.claim("extensions", "deployments") is True
    assert table.claim("apps", "deployments") is False

    cohabitator = table.get("deployments")
    assert cohabitator is not None
    assert cohabitator.seen is True
    assert cohabitator.claimed_by == "extensions"


def test_claim_with_same_group_again_is_allowed() -> None:
    table = CohabitationTable()

    assert table.claim("apps", "deployments") is True
    assert table.claim("apps", "deployments") is True


def test_claim_with_unregistered_resource_or_group_is_always_allowed() -> None:
    table = CohabitationTable()

    assert table.claim("", "pods") is True
    assert table.claim("apps", "deployments") is True
    assert table.claim("custom.example.com", "deployments") is True


def test_cohabitation_tables_with_default_resources_do_not_share_state() -> None:
    first = CohabitationTable(default_cohabitating_resources())
    second = CohabitationTable(default_cohabitating_resources())

    first.claim("extensions", "networkpolicies")

    assert second.claim("networking.k8s.io", "networkpolicies") is True
    assert "networkpolicies" in first
    assert "pods" not in first


def test_cohabitation_table_with_custom_resources_uses_only_those() -> None:
    table = CohabitationTable([new_cohabitating_resource("ingresses", "extensions", "networking.k8s.io")])

    assert table.claim("networking.k8s.io", "ingresses") is True
    assert table.claim("extensions", "ingresses") is False
    assert "deployments" not in table
