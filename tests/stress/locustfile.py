"""
Shoptab Load Testing with Locust

Prepare a server with demo data and two bearer tokens:
    SHOPTAB_DEMO_SEED_ENABLED=1 flask --app wsgi system seed-demo
    flask --app wsgi sessions issue --user-id <customer id>
    flask --app wsgi sessions issue --user-id <owner id>

Run with:
    SHOPTAB_CUSTOMER_TOKEN=... SHOPTAB_OWNER_TOKEN=... \
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%

After a run, `flask credit verify-ledger` must report no problems: every
concurrent tab posting has to land on the balance left by the one before.
"""

import os
import random
import time
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task


# =============================================================================
# CONFIGURATION
# =============================================================================

CUSTOMER_TOKEN = os.environ.get("SHOPTAB_CUSTOMER_TOKEN", "")
OWNER_TOKEN = os.environ.get("SHOPTAB_OWNER_TOKEN", "")
SHOP_ID = int(os.environ.get("SHOPTAB_STRESS_SHOP_ID", "1"))
PRODUCT_IDS = [int(p) for p in os.environ.get("SHOPTAB_STRESS_PRODUCT_IDS", "1,2,3").split(",") if p.strip()]
CUSTOMER_PHONE = os.environ.get("SHOPTAB_STRESS_PHONE", "+15550000003")


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect per-endpoint counts and latencies."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class ShoptabUser(HttpUser):
    """Base user carrying a pre-issued bearer token."""
    wait_time = between(0.5, 2)
    abstract = True

    token: Optional[str] = None

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, method: str, path: str, ok=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, path, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok)
        return response


class ShoppingUser(ShoptabUser):
    """
    Customer building carts and placing orders.
    Half the orders go on the shop tab so the ledger sees concurrent credits.
    """
    weight = 3

    def on_start(self):
        self.token = CUSTOMER_TOKEN

    @task(5)
    def browse_carts(self):
        self.timed("carts/list", "GET", "/api/carts/")

    @task(3)
    def place_order(self):
        cart_id = None
        for product_id in random.sample(PRODUCT_IDS, k=min(2, len(PRODUCT_IDS))):
            response = self.timed(
                "carts/add_item", "POST", "/api/carts/items", ok=(201,),
                json={"shop_id": SHOP_ID, "product_id": product_id, "quantity": random.randint(1, 3)},
            )
            if response.status_code != 201:
                return
            cart_id = response.json().get("cart", {}).get("id")

        if not cart_id:
            return

        payload = {"cart_id": cart_id, "order_type": "SHOP_PICKUP"}
        if random.random() < 0.5:
            payload.update({"payment_method": "CREDIT", "customer_phone": CUSTOMER_PHONE})
        # 409/404 when a parallel user already turned this cart into an order
        self.timed("orders/create", "POST", "/api/orders/", ok=(201, 404, 409), json=payload)

    @task(2)
    def my_tabs(self):
        self.timed("credit/me", "GET", "/api/credit/me/accounts")

    @task(1)
    def health_check(self):
        self.timed("system/health", "GET", "/api/health")


class ShopOwnerUser(ShoptabUser):
    """Owner advancing orders and taking tab payments."""
    weight = 1

    def on_start(self):
        self.token = OWNER_TOKEN

    @task(3)
    def advance_order(self):
        response = self.timed(
            "orders/list", "GET", "/api/orders/",
            params={"shop_id": SHOP_ID, "status": "ORDER_PLACED", "limit": 5},
        )
        if response.status_code != 200:
            return
        orders = response.json().get("orders", [])
        if not orders:
            return
        order_id = random.choice(orders)["id"]
        # 422 when another owner session moved it first
        self.timed(
            "orders/status", "PATCH", f"/api/orders/{order_id}/status", ok=(200, 422),
            json={"status": "PROCESSING"},
        )

    @task(2)
    def take_payment(self):
        response = self.timed(
            "credit/accounts", "GET", f"/api/shops/{SHOP_ID}/credit/accounts",
            params={"phone": CUSTOMER_PHONE.lstrip("+")},
        )
        if response.status_code != 200:
            return
        accounts = [a for a in response.json().get("accounts", []) if a["current_balance_cents"] > 0]
        if not accounts:
            return
        account = accounts[0]
        amount = random.randint(1, min(account["current_balance_cents"], 2000))
        # 422 when a concurrent payment already drained the balance
        self.timed(
            "credit/payment", "POST", f"/api/shops/{SHOP_ID}/credit/accounts/{account['id']}/payment",
            ok=(201, 422), json={"amount_cents": amount},
        )

    @task(1)
    def summary(self):
        self.timed("credit/summary", "GET", f"/api/shops/{SHOP_ID}/credit/summary")


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 500 if name.endswith(("list", "me", "health", "accounts", "summary")) else 1000
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads (list/get): P95 < 500ms, Error rate < 1%")
        print("  - Writes (create/post): P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
