"""
Payment Orchestrator - Demo Script
==================================
Walks through the main behaviours against the default sandboxed routing:

  1. Approved payments split across PSPs by traffic weight
  2. Terminal decline, no failover
  3. 3DS challenge handed back to the caller
  4. Vaulting a card and paying with the token
  5. Circuit breaker: force-open a PSP and watch routing avoid it
  6. Breaker reset
  7. PSP health check
  8. Stats overview

Run with:
    python tests/demo.py

Make sure the server is running first:
    uvicorn app.main:app --reload
"""

import random
import httpx

BASE_URL = "http://127.0.0.1:8000"

COLORS = {
    "green": "\033[92m",
    "red": "\033[91m",
    "yellow": "\033[93m",
    "cyan": "\033[96m",
    "bold": "\033[1m",
    "reset": "\033[0m",
}


def c(color: str, text: str) -> str:
    return f"{COLORS[color]}{text}{COLORS['reset']}"


def separator(title: str = "") -> None:
    line = "─" * 60
    if title:
        print(f"\n{c('bold', line)}")
        print(c("bold", f"  {title}"))
        print(c("bold", line))
    else:
        print(c("bold", line))


def print_result(result: dict) -> None:
    response = result["response"]
    if response["success"]:
        outcome = c("green", response["status"].upper())
    elif response.get("requires_action"):
        outcome = c("yellow", "ACTION REQUIRED")
    else:
        outcome = c("red", "DECLINED")
    print(f"  Outcome      : {outcome}")
    print(f"  PSP          : {result['psp']}")
    print(f"  Attempts     : {' -> '.join(a['psp'] for a in result['attempts'])}")
    if response.get("failure_category"):
        print(f"  Failure      : {response['failure_code']} ({response['failure_category']})")
    if response.get("requires_action"):
        print(f"  Action URL   : {response['requires_action']['url']}")
    print(f"  Latency      : {response['latency_ms']}ms")


def post_payment(client: httpx.Client, payload: dict) -> dict:
    resp = client.post(f"{BASE_URL}/payments", json=payload)
    resp.raise_for_status()
    return resp.json()


def make_payment(
    suffix: str = "",
    amount: int = 4990,
    currency: str = "USD",
    token_id: str = "tok_test_4242424242424242",
) -> dict:
    return {
        "idempotency_key": f"demo-{suffix or random.randint(1000, 9999)}",
        "amount": amount,
        "currency": currency,
        "token_id": token_id,
        "metadata": {"merchant": "demo-fitness-studio"},
    }


def print_psp_status(client: httpx.Client) -> None:
    for ps in client.get(f"{BASE_URL}/psps/status").json():
        state_color = "green" if ps["state"] == "closed" else ("yellow" if ps["state"] == "half_open" else "red")
        recovery = ""
        if ps.get("recovery_remaining_seconds") is not None:
            recovery = f" | recovery in {ps['recovery_remaining_seconds']:.1f}s"
        health = (ps.get("health") or {}).get("status", "unchecked")
        print(
            f"  {ps['name']:<10} state={c(state_color, ps['state']):<20} "
            f"failures={ps['failures']} health={health}{recovery}"
        )


def run_demo():
    print(c("bold", "\n" + "═" * 60))
    print(c("bold", "   Payment Orchestrator - Demo"))
    print(c("bold", "═" * 60))

    with httpx.Client(timeout=30) as client:

        # ── 0. Health check ───────────────────────────────────────
        separator("0. Service health check")
        try:
            r = client.get(f"{BASE_URL}/")
            r.raise_for_status()
            print(f"  {c('green', 'Service is UP')} ({r.json()['status']})")
        except httpx.HTTPError as e:
            print(c("red", f"  Cannot reach service: {e}"))
            print(c("yellow", "  Start the server with: uvicorn app.main:app --reload"))
            return

        # ── 1. Weighted routing ───────────────────────────────────
        separator("1. Approved payments (20, weighted routing)")
        by_psp: dict[str, int] = {}
        for i in range(20):
            result = post_payment(client, make_payment(f"normal-{i}", random.choice([990, 4990, 19900])))
            by_psp[result["psp"]] = by_psp.get(result["psp"], 0) + 1
            icon = c("green", "✓") if result["response"]["success"] else c("red", "✗")
            print(f"  {icon} pay-{i:02d} | psp={result['psp']:<8} | {result['response']['transaction_id']}")
        print(f"\n  Split: {by_psp}")

        # ── 2. Terminal decline ───────────────────────────────────
        separator("2. Insufficient funds (terminal, no failover)")
        print_result(post_payment(client, make_payment("nsf", token_id="tok_test_4000000000009995")))

        # ── 3. 3DS challenge ──────────────────────────────────────
        separator("3. 3DS challenge")
        print_result(post_payment(client, make_payment("3ds", token_id="tok_test_4000000000003220")))

        # ── 4. Vault a card ───────────────────────────────────────
        separator("4. Vault a card and pay with the token")
        r = client.post(
            f"{BASE_URL}/tokens",
            json={"card": {"number": "5555555555554444", "exp_month": "8", "exp_year": "30", "cvc": "123"}},
        )
        r.raise_for_status()
        token = r.json()
        print(f"  Token        : {token['id']} ({token['brand']} ****{token['last4']})")
        print_result(post_payment(client, make_payment("vaulted", token_id=token["id"])))
        client.delete(f"{BASE_URL}/tokens/{token['id']}")
        valid = client.get(f"{BASE_URL}/tokens/{token['id']}/valid").json()["valid"]
        print(f"  Revoked      : valid={valid}")

        # ── 5. Force circuit breaker open ─────────────────────────
        separator("5. Circuit breaker: force-opening stripe")
        r = client.post(f"{BASE_URL}/psps/stripe/inject-failures", params={"count": 3})
        r.raise_for_status()
        inj = r.json()
        state_color = "red" if inj["state"] == "open" else "yellow"
        print(f"  Injected {inj['injected_failures']} failures | state={c(state_color, inj['state'].upper())}")

        routed_to_stripe = 0
        for i in range(5):
            result = post_payment(client, make_payment(f"burst-{i}"))
            routed_to_stripe += result["psp"] == "stripe"
            print(f"  {c('yellow', '⚡')} burst-{i:02d} | psp={result['psp']}")
        if routed_to_stripe == 0:
            print(c("yellow", "\n  ✓ stripe bypassed while its circuit is OPEN"))
        else:
            print(c("red", "\n  ✗ stripe still received traffic with an open circuit"))
        print_psp_status(client)

        # ── 6. Reset ──────────────────────────────────────────────
        separator("6. Reset stripe breaker")
        client.post(f"{BASE_URL}/psps/stripe/reset").raise_for_status()
        print_psp_status(client)

        # ── 7. Health check ───────────────────────────────────────
        separator("7. PSP health check")
        for name, health in client.post(f"{BASE_URL}/psps/health-check").json().items():
            print(f"  {name:<10} {health['status']:<9} latency={health['latency_ms']}ms")

        # ── 8. Final stats ────────────────────────────────────────
        separator("8. Aggregate statistics")
        stats = client.get(f"{BASE_URL}/stats").json()
        print(f"  Total payments     : {stats['total_payments']}")
        print(f"  Approved           : {stats['total_approved']}")
        print(f"  Declined           : {stats['total_declined']}")
        print(f"  Approval rate      : {stats['overall_approval_rate']:.1%}")
        print(f"  Retried            : {stats['retried_payments']}")
        print(f"  Total volume       : {stats['total_volume']}")
        print(f"  Emergency path     : {stats['emergency_transactions']}")
        print(f"  Uptime             : {stats['uptime_seconds']:.1f}s")

        print(f"\n  {'PSP':<10} {'Attempts':>8} {'Success':>8} {'Failed':>8} {'Action':>8} {'AvgMs':>8}")
        print(f"  {'─'*10} {'─'*8} {'─'*8} {'─'*8} {'─'*8} {'─'*8}")
        for name, ps in stats["per_psp"].items():
            print(
                f"  {name:<10} {ps['attempt_count']:>8} {ps['success_count']:>8} "
                f"{ps['failure_count']:>8} {ps['requires_action_count']:>8} {ps['avg_latency_ms']:>8.1f}"
            )

    separator()
    print(c("green", "  Demo complete! Check the server logs for detailed decision traces."))
    print(c("cyan", "  Swagger UI available at: http://127.0.0.1:8000/docs"))
    separator()


if __name__ == "__main__":
    run_demo()
