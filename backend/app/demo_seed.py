import json
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from .order_totals import round_half_up

# (name, sku, price_cents, initial_stock, reorder_point)
SEED_CATALOG = {
    "RESTAURANT": [
        ("Margherita Pizza", "RST-PIZ-001", 3500, 120, 25),
        ("Chicken Shawarma", "RST-SHW-002", 2200, 160, 30),
        ("Lentil Soup", "RST-SUP-003", 1800, 80, 15),
        ("Fresh Juice", "RST-JUI-004", 1500, 200, 40),
        ("Dessert Box", "RST-DES-005", 2600, 60, 12),
    ],
    "CAFE": [
        ("Espresso", "CAF-ESP-001", 1200, 300, 80),
        ("Cappuccino", "CAF-CAP-002", 1600, 260, 70),
        ("Iced Latte", "CAF-LAT-003", 1900, 240, 60),
        ("Croissant", "CAF-CRO-004", 1400, 90, 20),
        ("Cheesecake Slice", "CAF-CHS-005", 2100, 55, 12),
    ],
    "BAKERY": [
        ("Sourdough Loaf", "BAK-SOU-001", 1800, 70, 15),
        ("Baguette", "BAK-BAG-002", 900, 120, 25),
        ("Cinnamon Roll", "BAK-CIN-003", 1100, 90, 20),
        ("Chocolate Muffin", "BAK-MUF-004", 1000, 110, 25),
        ("Birthday Cake", "BAK-CAK-005", 8500, 18, 5),
    ],
    "RETAIL": [
        ("Wireless Mouse", "RTL-MOU-001", 6500, 35, 8),
        ("USB-C Cable", "RTL-CAB-002", 2500, 80, 20),
        ("Phone Case", "RTL-CAS-003", 4500, 60, 15),
        ("Power Bank", "RTL-PWB-004", 9900, 25, 6),
        ("Bluetooth Speaker", "RTL-SPK-005", 14500, 18, 4),
    ],
    "OTHER": [
        ("Standard Item", "GEN-001", 2500, 100, 20),
        ("Premium Item", "GEN-002", 7500, 40, 10),
        ("Service Fee", "GEN-003", 1500, 999, 0),
    ],
}

SEED_CUSTOMERS = [
    ("Al Ain Catering", "ops@alaincatering.example"),
    ("Downtown Coffee Club", "hello@coffeeclub.example"),
    ("Sunset Retail", "finance@sunsetretail.example"),
]

PAYMENT_CONNECTIONS = [
    ("BANK", "Bank Transfer"),
    ("PAYPAL", "PayPal"),
    ("CARD", "Credit / Debit Cards"),
]

SEED_INVOICE_STATUSES = ["PAID", "SENT", "OVERDUE", "DRAFT"]
SEED_INVOICE_COUNT = 7
SEED_TAX_RATE = Decimal("0.05")


def _pick(rng: random.Random, products: list) -> list:
    n = rng.randint(2, min(4, len(products)))
    return rng.sample(products, n)


def seed_demo_tenant(cur, tenant_id: str, industry: str, currency: str = "AED", rng: random.Random = None) -> dict:
    """
    Populate a fresh demo tenant so every POS screen has something to show:
    catalog with stock, payment connections, a few inventory movements,
    customers and a week of invoices.
    """
    rng = rng or random.Random()
    now = datetime.now(timezone.utc)
    cur.execute(
        """
        INSERT INTO warehouses (id, tenant_id, name, code)
        VALUES (gen_random_uuid(), %s, 'Main Warehouse', 'MAIN')
        RETURNING id
        """,
        (tenant_id,),
    )
    warehouse_id = cur.fetchone()["id"]

    products = []
    for name, sku, price_cents, initial_stock, reorder_point in SEED_CATALOG.get(industry) or SEED_CATALOG["OTHER"]:
        cur.execute(
            """
            INSERT INTO products (id, tenant_id, name, sku, price_cents, currency, is_active)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, true)
            RETURNING id
            """,
            (tenant_id, name, sku, price_cents, currency),
        )
        pid = cur.fetchone()["id"]
        cur.execute(
            """
            INSERT INTO stock_items (id, tenant_id, warehouse_id, product_id, on_hand, reserved, reorder_point)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
            """,
            (tenant_id, warehouse_id, pid, initial_stock, rng.randint(0, min(5, initial_stock)), reorder_point),
        )
        products.append({"id": pid, "name": name, "price_cents": price_cents})

    for provider, display_name in PAYMENT_CONNECTIONS:
        cur.execute(
            """
            INSERT INTO payment_connections (id, tenant_id, provider, status, display_name)
            VALUES (gen_random_uuid(), %s, %s, 'DISCONNECTED', %s)
            """,
            (tenant_id, provider, display_name),
        )

    movement_templates = [
        ("RECEIPT", "POSTED", f"RCV-{rng.randint(1000, 9999)}", "Initial stock receipt"),
        ("DELIVERY", "POSTED", f"DLV-{rng.randint(1000, 9999)}", "Sample customer delivery"),
        ("ADJUSTMENT", "DRAFT", f"ADJ-{rng.randint(1000, 9999)}", "Stock count pending approval"),
    ]
    for mtype, mstatus, reference, notes in movement_templates:
        cur.execute(
            """
            INSERT INTO inventory_movements (id, tenant_id, warehouse_id, type, status, reference, notes, posted_at)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (tenant_id, warehouse_id, mtype, mstatus, reference, notes, now if mstatus == "POSTED" else None),
        )
        mid = cur.fetchone()["id"]
        for p in _pick(rng, products):
            qty = -rng.randint(1, 5) if mtype == "DELIVERY" else rng.randint(1, 10)
            cur.execute(
                """
                INSERT INTO inventory_movement_lines (id, movement_id, product_id, quantity)
                VALUES (gen_random_uuid(), %s, %s, %s)
                """,
                (mid, p["id"], qty),
            )

    for name, email in SEED_CUSTOMERS:
        cur.execute(
            """
            INSERT INTO customers (id, tenant_id, name, email)
            VALUES (gen_random_uuid(), %s, %s, %s)
            """,
            (tenant_id, name, email),
        )

    for i in range(SEED_INVOICE_COUNT):
        cust_name, cust_email = SEED_CUSTOMERS[i % len(SEED_CUSTOMERS)]
        status = SEED_INVOICE_STATUSES[i % len(SEED_INVOICE_STATUSES)]
        issued_at = now - timedelta(days=i)
        lines = []
        for p in _pick(rng, products):
            qty = rng.randint(1, 3)
            lines.append((p["id"], p["name"], qty, p["price_cents"], p["price_cents"] * qty))
        subtotal = sum(ln[4] for ln in lines)
        tax = round_half_up(Decimal(subtotal) * SEED_TAX_RATE)
        cur.execute(
            """
            INSERT INTO invoices
              (id, tenant_id, number, status, customer_name, customer_email, issued_at, due_at,
               subtotal_cents, tax_cents, total_cents, currency)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                tenant_id,
                f"INV-{i + 1:06d}",
                status,
                cust_name,
                cust_email,
                issued_at,
                issued_at + timedelta(days=7),
                subtotal,
                tax,
                subtotal + tax,
                currency,
            ),
        )
        inv_id = cur.fetchone()["id"]
        for product_id, description, qty, unit_price, line_total in lines:
            cur.execute(
                """
                INSERT INTO invoice_lines (id, invoice_id, product_id, description, quantity, unit_price_cents, line_total_cents)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                """,
                (inv_id, product_id, description, qty, unit_price, line_total),
            )

    summary = {
        "warehouse_id": str(warehouse_id),
        "products": len(products),
        "customers": len(SEED_CUSTOMERS),
        "invoices": SEED_INVOICE_COUNT,
    }
    cur.execute(
        """
        INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, NULL, 'demo_seed', 'tenant', %s, %s::jsonb)
        """,
        (tenant_id, tenant_id, json.dumps(summary)),
    )
    return summary
