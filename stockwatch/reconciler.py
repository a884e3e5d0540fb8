"""Brand stock reconciliation.

One pass = for each monitored brand, sequentially:
    fetch products → aggregate → compare with stored state → alert on transition

Transition rules (prev = stored state, None when never observed):
    prev != OUT_OF_STOCK and snapshot all OOS   → depletion alert, OUT_OF_STOCK
    prev == OUT_OF_STOCK and some stock again    → restock alert, IN_STOCK
    anything else                                → no alert; first sighting seeds state

A brand found already depleted on first sighting does alert. A brand found
in stock on first sighting does not ("back in stock" needs a prior
"out of stock").
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from . import config
from .catalog import fetch_all_products
from .errors import UpstreamError
from .history import record_transition
from .notifications import Notifier, NotifyResult, build_sink, depletion_message, restock_message
from .state import JsonStateStore, NotificationState, StateStore
from .stock import BrandStockSnapshot, aggregate

log = logging.getLogger(__name__)

DEPLETED = "depleted"
RESTOCKED = "restocked"


@dataclass
class Decision:
    alert: str | None                      # DEPLETED, RESTOCKED or None
    new_state: NotificationState | None    # None = leave stored state as-is


def decide(prev: NotificationState | None, snapshot: BrandStockSnapshot) -> Decision:
    """Pure transition function."""
    if snapshot.all_out_of_stock:
        if prev != NotificationState.OUT_OF_STOCK:
            return Decision(DEPLETED, NotificationState.OUT_OF_STOCK)
        return Decision(None, NotificationState.OUT_OF_STOCK)

    if snapshot.in_stock_products > 0:
        if prev == NotificationState.OUT_OF_STOCK:
            return Decision(RESTOCKED, NotificationState.IN_STOCK)
        return Decision(None, NotificationState.IN_STOCK)

    # Empty brand: nothing to say, keep whatever we knew
    return Decision(None, prev)


@dataclass
class BrandResult:
    brand: str
    snapshot: BrandStockSnapshot | None = None
    previous_state: str | None = None
    state: str | None = None
    alert: str | None = None
    notification: NotifyResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = {
            "brand": self.brand,
            "previous_state": self.previous_state,
            "state": self.state,
            "alert": self.alert,
        }
        if self.snapshot is not None:
            data.update(self.snapshot.to_dict())
        if self.notification is not None:
            data["notification"] = self.notification.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class Reconciler:
    store: StateStore
    notifier: Notifier
    brands: list[str] = field(default_factory=list)
    fetch_products: Callable[[str], list[dict]] = fetch_all_products
    brand_delay: float = 0.0
    rearm_on_failure: bool = False

    def _value(self, state: NotificationState | None) -> str | None:
        return state.value if state is not None else None

    def reconcile_brand(self, brand: str) -> BrandResult:
        """Run one brand through fetch → aggregate → decide → alert.

        The brand lock covers the fetch too, so overlapping passes apply
        their catalog reads in the order they were taken.

        UpstreamError is caught and reported in the result; the stored state
        is not touched in that case.
        """
        result = BrandResult(brand)
        with self.store.locked(brand):
            log.info(f"Checking stock for: {brand}")
            try:
                snapshot = aggregate(brand, self.fetch_products(brand))
            except UpstreamError as e:
                log.error(f"{brand}: stock check failed — {e}")
                result.error = str(e)
                return result

            result.snapshot = snapshot
            log.info(f"{brand}: {snapshot.in_stock_products}/{snapshot.total_products} in stock")

            prev = self.store.get(brand)
            decision = decide(prev, snapshot)
            result.previous_state = self._value(prev)
            result.alert = decision.alert

            new_state = decision.new_state
            if decision.alert:
                result.notification = self._send_alert(decision.alert, snapshot)
                if not result.notification.success and self.rearm_on_failure:
                    log.warning(f"{brand}: alert not delivered — keeping {result.previous_state} to retry next pass")
                    new_state = prev

            if new_state is not None:
                self.store.set(
                    brand, new_state,
                    total_products=snapshot.total_products,
                    in_stock_products=snapshot.in_stock_products,
                )
            result.state = self._value(new_state)

        if decision.alert and new_state != prev:
            record_transition(
                brand, result.state, result.notification.success,
                total_products=snapshot.total_products,
                in_stock_products=snapshot.in_stock_products,
                out_of_stock_products=snapshot.out_of_stock_products,
            )
        return result

    def _send_alert(self, alert: str, snapshot: BrandStockSnapshot) -> NotifyResult:
        if alert == DEPLETED:
            log.info(f"{snapshot.brand} - ALL OUT OF STOCK")
            subject, body = depletion_message(snapshot)
        else:
            log.info(f"{snapshot.brand} - BACK IN STOCK")
            subject, body = restock_message(snapshot)
        return self.notifier.notify(subject, body)

    def reconcile_all(self, brands: list[str] | None = None) -> dict[str, BrandResult]:
        """Reconcile every brand in order. One brand's failure never stops the rest."""
        brands = self.brands if brands is None else brands
        results = {}
        for i, brand in enumerate(brands):
            if i and self.brand_delay > 0:
                time.sleep(self.brand_delay)
            try:
                results[brand] = self.reconcile_brand(brand)
            except Exception as e:
                log.exception(f"{brand}: unexpected error during reconciliation")
                results[brand] = BrandResult(brand, error=f"{type(e).__name__}: {e}")
        failed = [b for b, r in results.items() if not r.ok]
        if failed:
            log.warning(f"Reconciliation finished with {len(failed)} failed brand(s): {', '.join(failed)}")
        else:
            log.info(f"Reconciliation finished for {len(results)} brand(s)")
        return results


def build_reconciler() -> Reconciler:
    """Wire a Reconciler from configuration."""
    return Reconciler(
        store=JsonStateStore(config.STATE_FILE),
        notifier=Notifier(build_sink()),
        brands=list(config.BRANDS_TO_MONITOR),
        brand_delay=config.BRAND_CHECK_DELAY,
        rearm_on_failure=config.REARM_ON_NOTIFY_FAILURE,
    )
