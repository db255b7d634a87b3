from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from nerdy_k8s_cluster_backup.ledger import BackedUpItems
from nerdy_k8s_cluster_backup.models import ItemKey


def test_mark_with_new_key_reports_not_present_then_present() -> None:
    ledger = BackedUpItems()
    key = ItemKey(resource="pods", namespace="ns-a", name="web-0")

    assert ledger.mark(key) is False
    assert ledger.mark(key) is True
    assert key in ledger
    assert len(ledger) == 1


def test_mark_with_same_name_in_other_namespace_or_resource_is_distinct() -> None:
    ledger = BackedUpItems()

    ledger.mark(ItemKey(resource="pods", namespace="ns-a", name="web-0"))

    assert ledger.mark(ItemKey(resource="pods", namespace="ns-b", name="web-0")) is False
    assert ledger.mark(ItemKey(resource="deployments.apps", namespace="ns-a", name="web-0")) is False
    assert len(ledger) == 3


def test_mark_with_concurrent_callers_adds_each_key_once() -> None:
    ledger = BackedUpItems()
    key = ItemKey(resource="pods", namespace="ns-a", name="web-0")

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: ledger.mark(key), range(64)))

    assert results.count(False) == 1
    assert len(ledger) == 1


def test_iteration_with_several_keys_is_sorted() -> None:
    ledger = BackedUpItems()
    ledger.mark(ItemKey(resource="pods", namespace="ns-b", name="a"))
    ledger.mark(ItemKey(resource="configmaps", namespace="ns-a", name="z"))
    ledger.mark(ItemKey(resource="pods", namespace="ns-a", name="b"))

    assert [str(key) for key in ledger] == [
        "resource=configmaps,namespace=ns-a,name=z",
        "resource=pods,namespace=ns-a,name=b",
        "resource=pods,namespace=ns-b,name=a",
    ]
