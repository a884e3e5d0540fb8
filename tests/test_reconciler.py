"""Reconciliation state-machine tests.

Products are served by a fake fetcher and notifications go to a mock
Notifier, so every transition rule can be exercised without I/O.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from stockwatch.errors import UpstreamError
from stockwatch.notifications import NotifyResult
from stockwatch.reconciler import DEPLETED, RESTOCKED, Reconciler, decide
from stockwatch.state import MemoryStateStore, NotificationState
from stockwatch.stock import aggregate

OOS = NotificationState.OUT_OF_STOCK
IN = NotificationState.IN_STOCK


@pytest.fixture(autouse=True)
def _redirect_history(monkeypatch, tmp_path):
    import stockwatch.config as config_mod
    monkeypatch.setattr(config_mod, "HISTORY_FILE", tmp_path / "history.json")


def _product(*quantities):
    return {"variants": [{"inventory_quantity": q} for q in quantities]}


DEPLETED_PRODUCTS = [_product(0), _product(-1)]
STOCKED_PRODUCTS = [_product(0), _product(3)]


def _notifier(success=True):
    notifier = MagicMock()
    notifier.notify.return_value = NotifyResult(success, "mock", error=None if success else "boom")
    notifier.method = "mock"
    return notifier


def _reconciler(catalog: dict, store=None, notifier=None, **kwargs):
    def fetch(brand):
        value = catalog[brand]
        if isinstance(value, Exception):
            raise value
        return value

    return Reconciler(
        store=store or MemoryStateStore(),
        notifier=notifier or _notifier(),
        brands=list(catalog),
        fetch_products=fetch,
        **kwargs,
    )


# ── decide() ──

def test_decide_unknown_depleted_alerts():
    d = decide(None, aggregate("A", DEPLETED_PRODUCTS))
    assert d.alert == DEPLETED
    assert d.new_state is OOS


def test_decide_unknown_in_stock_is_silent():
    d = decide(None, aggregate("A", STOCKED_PRODUCTS))
    assert d.alert is None
    assert d.new_state is IN


def test_decide_in_stock_to_depleted_alerts():
    assert decide(IN, aggregate("A", DEPLETED_PRODUCTS)).alert == DEPLETED


def test_decide_oos_repeat_is_silent():
    d = decide(OOS, aggregate("A", DEPLETED_PRODUCTS))
    assert d.alert is None
    assert d.new_state is OOS


def test_decide_oos_to_stocked_restocks():
    d = decide(OOS, aggregate("A", STOCKED_PRODUCTS))
    assert d.alert == RESTOCKED
    assert d.new_state is IN


def test_decide_in_stock_repeat_is_silent():
    assert decide(IN, aggregate("A", STOCKED_PRODUCTS)).alert is None


def test_decide_empty_brand_keeps_state():
    empty = aggregate("A", [])
    assert decide(None, empty).new_state is None
    assert decide(OOS, empty).new_state is OOS
    assert decide(OOS, empty).alert is None


# ── reconcile_brand() ──

def test_first_observation_depleted_sends_exactly_one_alert():
    notifier = _notifier()
    r = _reconciler({"Acme": DEPLETED_PRODUCTS}, notifier=notifier)

    result = r.reconcile_brand("Acme")

    assert result.alert == DEPLETED
    assert notifier.notify.call_count == 1
    subject, body = notifier.notify.call_args.args
    assert "OUT OF STOCK" in subject and "Acme" in subject
    assert r.store.get("Acme") is OOS


def test_first_observation_in_stock_is_silent_but_recorded():
    notifier = _notifier()
    r = _reconciler({"Acme": STOCKED_PRODUCTS}, notifier=notifier)

    result = r.reconcile_brand("Acme")

    assert result.alert is None
    notifier.notify.assert_not_called()
    assert r.store.get("Acme") is IN


def test_repeated_depletion_does_not_realert():
    notifier = _notifier()
    r = _reconciler({"Acme": DEPLETED_PRODUCTS}, store=MemoryStateStore({"Acme": OOS}), notifier=notifier)

    r.reconcile_brand("Acme")
    r.reconcile_brand("Acme")

    notifier.notify.assert_not_called()
    assert r.store.get("Acme") is OOS


def test_restock_after_depletion():
    notifier = _notifier()
    catalog = {"Acme": DEPLETED_PRODUCTS}
    r = _reconciler(catalog, notifier=notifier)

    r.reconcile_brand("Acme")
    catalog["Acme"] = STOCKED_PRODUCTS
    result = r.reconcile_brand("Acme")

    assert result.alert == RESTOCKED
    assert result.previous_state == "OUT_OF_STOCK"
    assert result.state == "IN_STOCK"
    subjects = [c.args[0] for c in notifier.notify.call_args_list]
    assert len(subjects) == 2
    assert "BACK IN STOCK" in subjects[1]


def test_upstream_error_leaves_state_untouched():
    store = MemoryStateStore({"Acme": OOS})
    notifier = _notifier()
    r = _reconciler({"Acme": UpstreamError(503, "Service Unavailable")}, store=store, notifier=notifier)

    result = r.reconcile_brand("Acme")

    assert not result.ok
    assert "503" in result.error
    assert store.get("Acme") is OOS
    notifier.notify.assert_not_called()


def test_failed_notification_still_records_transition():
    """Fire-and-forget: the decision stands even if the alert was lost."""
    r = _reconciler({"Acme": DEPLETED_PRODUCTS}, notifier=_notifier(success=False))

    result = r.reconcile_brand("Acme")

    assert result.notification.success is False
    assert r.store.get("Acme") is OOS


def test_rearm_on_failure_keeps_previous_state():
    notifier = _notifier(success=False)
    r = _reconciler({"Acme": DEPLETED_PRODUCTS}, notifier=notifier, rearm_on_failure=True)

    r.reconcile_brand("Acme")
    assert r.store.get("Acme") is None

    r.reconcile_brand("Acme")
    assert notifier.notify.call_count == 2


def test_transition_recorded_in_history():
    from stockwatch.history import load_history

    r = _reconciler({"Acme": DEPLETED_PRODUCTS})
    r.reconcile_brand("Acme")
    r.reconcile_brand("Acme")

    history = load_history()
    assert len(history) == 1
    assert history[0]["brand"] == "Acme"
    assert history[0]["state"] == "OUT_OF_STOCK"
    assert history[0]["notified"] is True


def test_silent_seed_not_recorded_in_history():
    from stockwatch.history import load_history

    _reconciler({"Acme": STOCKED_PRODUCTS}).reconcile_brand("Acme")
    assert load_history() == []


# ── reconcile_all() ──

def test_one_brand_failure_does_not_stop_others():
    store = MemoryStateStore()
    r = _reconciler({
        "Acme": DEPLETED_PRODUCTS,
        "Broken": UpstreamError(500, "Internal Server Error"),
        "Globex": STOCKED_PRODUCTS,
    }, store=store)

    results = r.reconcile_all()

    assert list(results) == ["Acme", "Broken", "Globex"]
    assert results["Broken"].ok is False
    assert store.get("Broken") is None
    assert store.get("Acme") is OOS
    assert store.get("Globex") is IN


def test_unexpected_error_is_isolated():
    r = _reconciler({"Acme": RuntimeError("bad data"), "Globex": STOCKED_PRODUCTS})

    results = r.reconcile_all()

    assert "RuntimeError" in results["Acme"].error
    assert results["Globex"].ok


def test_result_to_dict_contains_snapshot():
    results = _reconciler({"Acme": STOCKED_PRODUCTS}).reconcile_all()
    data = results["Acme"].to_dict()
    assert data["total_products"] == 2
    assert data["in_stock_products"] == 1
    assert data["state"] == "IN_STOCK"
    assert data["alert"] is None


def test_overlapping_passes_alert_once():
    """Two concurrent passes on the same brand must not double-alert."""
    notifier = MagicMock()
    notifier.method = "mock"

    def slow_notify(subject, body):
        time.sleep(0.2)
        return NotifyResult(True, "mock")

    notifier.notify.side_effect = slow_notify
    r = _reconciler({"Acme": DEPLETED_PRODUCTS}, notifier=notifier)

    threads = [threading.Thread(target=r.reconcile_brand, args=("Acme",)) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert notifier.notify.call_count == 1


def test_overlapping_passes_apply_fetches_in_order():
    """A slow fetch cannot be overtaken by a later pass on the same brand."""
    store = MemoryStateStore({"Acme": IN})
    notifier = _notifier()
    first_started = threading.Event()
    release_first = threading.Event()
    fetches = []

    def fetch(brand):
        fetches.append(brand)
        if len(fetches) == 1:
            first_started.set()
            release_first.wait(5)
            return DEPLETED_PRODUCTS
        return STOCKED_PRODUCTS

    r = Reconciler(store=store, notifier=notifier, brands=["Acme"], fetch_products=fetch)

    first = threading.Thread(target=r.reconcile_brand, args=("Acme",))
    first.start()
    assert first_started.wait(5)
    second = threading.Thread(target=r.reconcile_brand, args=("Acme",))
    second.start()
    time.sleep(0.1)
    assert len(fetches) == 1  # second pass waits for the lock before fetching

    release_first.set()
    first.join(5)
    second.join(5)

    subjects = [c.args[0] for c in notifier.notify.call_args_list]
    assert len(subjects) == 2
    assert "OUT OF STOCK" in subjects[0]
    assert "BACK IN STOCK" in subjects[1]
    assert store.get("Acme") is IN
