#!/usr/bin/env python3
"""
Integration Test Suite for the Voucher Storefront

Usage:
    1. Start the services (gateway 8000, storefront 8001, admin 8002, payments 8004),
       e.g. uvicorn services.storefront.main:app --port 8001
    2. Provision one customer and one admin account in the backend and export
       INTEGRATION_USER_EMAIL / INTEGRATION_USER_PASSWORD and
       INTEGRATION_ADMIN_EMAIL / INTEGRATION_ADMIN_PASSWORD
    3. Install dependencies: pip install requests
    4. Run the script: python tests/integration_test.py

This script tests the full flow:
    - Sign-in against the backend auth endpoint
    - Catalog management through the admin table editor
    - Shopping Cart
    - QRIS payment and order placement
    - Security/Negative Tests

Output:
    - Console logs with pass/fail status
    - integration_test_results.json report
"""
import requests
import json
import os
import time
import sys
from datetime import datetime
from typing import Dict, Any

# Configuration
BASE_URL = os.getenv("GATEWAY_URL", "http://localhost:8000")
SUPABASE_URL = os.getenv("SUPABASE_URL", "http://localhost:54321")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
USER_EMAIL = os.getenv("INTEGRATION_USER_EMAIL", "customer@test.com")
USER_PASSWORD = os.getenv("INTEGRATION_USER_PASSWORD", "Password123!")
ADMIN_EMAIL = os.getenv("INTEGRATION_ADMIN_EMAIL", "admin@test.com")
ADMIN_PASSWORD = os.getenv("INTEGRATION_ADMIN_PASSWORD", "Password123!")
CLIENT_ID = f"integration-{int(time.time())}"
RESULTS_FILE = "integration_test_results.json"

# Colors
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

class TestRunner:
    def __init__(self):
        self.results = []
        self.session = requests.Session()
        self.store: Dict[str, Any] = {}
        self.start_time = time.time()

    def log(self, message: str, color: str = Colors.ENDC):
        print(f"{color}{message}{Colors.ENDC}")

    def save_result(self, name: str, status: str, duration: float, error: str = None):
        self.results.append({
            "test_name": name,
            "status": status,
            "duration": duration,
            "error": error,
            "timestamp": datetime.utcnow().isoformat()
        })
        color = Colors.GREEN if status == "PASS" else Colors.FAIL
        self.log(f"[{status}] {name} ({duration:.4f}s)", color)
        if error:
            self.log(f"  Error: {error}", Colors.FAIL)

    def run_test(self, name: str, func, *args, **kwargs):
        start = time.time()
        try:
            func(*args, **kwargs)
            duration = time.time() - start
            self.save_result(name, "PASS", duration)
        except AssertionError as e:
            duration = time.time() - start
            self.save_result(name, "FAIL", duration, str(e))
        except Exception as e:
            duration = time.time() - start
            self.save_result(name, "ERROR", duration, str(e))

    def assert_status(self, response, expected: int):
        if response.status_code != expected:
            raise AssertionError(f"Expected status {expected}, got {response.status_code}. Body: {response.text}")

    def save_report(self):
        with open(RESULTS_FILE, "w") as f:
            json.dump({
                "summary": {
                    "total": len(self.results),
                    "passed": len([r for r in self.results if r["status"] == "PASS"]),
                    "failed": len([r for r in self.results if r["status"] != "PASS"]),
                    "total_duration": time.time() - self.start_time
                },
                "results": self.results
            }, f, indent=2)
        self.log(f"\nTest results saved to {RESULTS_FILE}", Colors.BLUE)

# --- Test Functions ---

def test_health_check(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/health")
    runner.assert_status(resp, 200)
    data = resp.json()
    if data["status"] != "healthy":
        raise AssertionError("System is not healthy")

# Phase 1: Authentication (accounts are provisioned in the backend beforehand)

def sign_in(email: str, password: str) -> str:
    resp = requests.post(
        f"{SUPABASE_URL}/auth/v1/token",
        params={"grant_type": "password"},
        json={"email": email, "password": password},
        headers={"apikey": SUPABASE_ANON_KEY},
    )
    if resp.status_code != 200:
        raise AssertionError(f"Sign-in failed for {email}: {resp.text}")
    return resp.json()["access_token"]

def login_users(runner: TestRunner):
    runner.store["admin_token"] = sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    runner.store["user_token"] = sign_in(USER_EMAIL, USER_PASSWORD)

def admin_headers(runner: TestRunner) -> dict:
    return {"Authorization": f"Bearer {runner.store['admin_token']}"}

def user_headers(runner: TestRunner) -> dict:
    return {"Authorization": f"Bearer {runner.store['user_token']}", "X-Client-ID": CLIENT_ID}

# Phase 2: Catalog management

def create_category(runner: TestRunner):
    suffix = int(time.time())
    data = {"name": f"Integration {suffix}", "slug": f"integration-{suffix}"}
    resp = runner.session.post(f"{BASE_URL}/api/admin/tables/categories", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    runner.store["category_id"] = resp.json()["data"]["id"]

def create_product(runner: TestRunner):
    data = {
        "name": "Integration Voucher 7 Days",
        "description": "Created by the integration suite",
        "price": 200000,
        "discount": 15,
        "category_id": runner.store["category_id"],
        "duration": "7 Days",
    }
    resp = runner.session.post(f"{BASE_URL}/api/admin/tables/products", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    product = resp.json()["data"]
    runner.store["product_id"] = product["id"]
    if product["is_popular"] is not False:
        raise AssertionError("is_popular should default to false")

def list_products(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/api/products", params={"category_id": runner.store["category_id"]})
    runner.assert_status(resp, 200)
    products = resp.json()["data"]
    if not any(p["id"] == runner.store["product_id"] for p in products):
        raise AssertionError("Created product not found in list")

def get_product_details(runner: TestRunner):
    pid = runner.store["product_id"]
    resp = runner.session.get(f"{BASE_URL}/api/products/{pid}")
    runner.assert_status(resp, 200)
    if resp.json()["data"]["name"] != "Integration Voucher 7 Days":
        raise AssertionError("Product details mismatch")

# Phase 3: Cart

def add_to_cart(runner: TestRunner):
    data = {"product_id": runner.store["product_id"], "quantity": 2}
    resp = runner.session.post(f"{BASE_URL}/api/cart/items", json=data, headers=user_headers(runner))
    runner.assert_status(resp, 200)

def view_cart(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/api/cart", headers=user_headers(runner))
    runner.assert_status(resp, 200)
    cart = resp.json()["data"]
    if len(cart["items"]) != 1 or cart["items"][0]["quantity"] != 2:
        raise AssertionError("Cart quantity mismatch")
    # 200000 less 15% is 170000
    if cart["total"] != 340000:
        raise AssertionError(f"Cart total mismatch. Got: {cart['total']}")

# Phase 4: Payment and order

def request_qris(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/api/checkout/payment", json={}, headers=user_headers(runner))
    runner.assert_status(resp, 200)
    session = resp.json()["data"]
    if session["step"] != "qris" or not session["payment_id"]:
        raise AssertionError("QRIS code was not generated")
    runner.store["payment_id"] = session["payment_id"]

def confirm_payment(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/api/checkout/payment/confirm", headers=user_headers(runner))
    runner.assert_status(resp, 200)
    placed = resp.json()["data"]
    if placed["payment_id"] != runner.store["payment_id"]:
        raise AssertionError("Payment id mismatch")
    runner.store["order_id"] = placed["order_id"]

def verify_cart_cleared(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/api/cart", headers=user_headers(runner))
    runner.assert_status(resp, 200)
    if resp.json()["data"]["items"]:
        raise AssertionError("Cart not cleared after order")

def verify_order_recorded(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.get(f"{BASE_URL}/api/admin/orders/{oid}/items", headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    items = resp.json()["data"]
    if len(items) != 1 or items[0]["price"] != 170000:
        raise AssertionError("Order items not recorded at the discounted price")

def complete_order(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.put(
        f"{BASE_URL}/api/admin/orders/{oid}/status",
        json={"status": "completed"},
        headers=admin_headers(runner),
    )
    runner.assert_status(resp, 200)

# Phase 5: Negative Tests

def negative_tests(runner: TestRunner):
    # Checkout without a session
    resp = runner.session.post(f"{BASE_URL}/api/checkout", headers={"X-Client-ID": CLIENT_ID})
    if resp.status_code != 401:
        raise AssertionError(f"Expected 401 for anonymous checkout, got {resp.status_code}")

    # Customers cannot reach the admin area
    resp = runner.session.get(f"{BASE_URL}/api/admin/dashboard", headers=user_headers(runner))
    if resp.status_code != 403:
        raise AssertionError(f"Expected 403 for customer on admin, got {resp.status_code}")

    # Table names outside the allow-list
    resp = runner.session.get(f"{BASE_URL}/api/admin/tables/pg_user", headers=admin_headers(runner))
    if resp.status_code != 400:
        raise AssertionError(f"Expected 400 for invalid table, got {resp.status_code}")

    # Product without a category
    bad_product = {"name": "Bad", "price": 1000, "category_id": "", "duration": "1 Day"}
    resp = runner.session.post(f"{BASE_URL}/api/admin/tables/products", json=bad_product, headers=admin_headers(runner))
    if resp.status_code != 422:
        raise AssertionError(f"Expected 422 for missing category, got {resp.status_code}")

def cleanup(runner: TestRunner):
    headers = admin_headers(runner)
    for table, key in (("products", "product_id"), ("categories", "category_id")):
        if key in runner.store:
            resp = runner.session.delete(f"{BASE_URL}/api/admin/tables/{table}/{runner.store[key]}", headers=headers)
            runner.assert_status(resp, 200)


def main():
    runner = TestRunner()
    runner.log("Starting Integration Tests...\n", Colors.HEADER)

    # 1. Health
    runner.run_test("Health Check", test_health_check, runner)

    # 2. Auth
    runner.run_test("Login Users", login_users, runner)

    # 3. Catalog
    runner.run_test("Create Category", create_category, runner)
    runner.run_test("Create Product", create_product, runner)
    runner.run_test("List Products", list_products, runner)
    runner.run_test("Get Product Details", get_product_details, runner)

    # 4. Cart
    runner.run_test("Add to Cart", add_to_cart, runner)
    runner.run_test("View Cart", view_cart, runner)

    # 5. Payment and order
    runner.run_test("Request QRIS", request_qris, runner)
    runner.run_test("Confirm Payment", confirm_payment, runner)
    runner.run_test("Verify Cart Cleared", verify_cart_cleared, runner)
    runner.run_test("Verify Order Recorded", verify_order_recorded, runner)
    runner.run_test("Complete Order", complete_order, runner)

    # 6. Negative
    runner.run_test("Negative Tests", negative_tests, runner)

    runner.run_test("Cleanup", cleanup, runner)
    runner.save_report()

    # Exit code
    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
