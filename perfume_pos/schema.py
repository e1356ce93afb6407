from __future__ import annotations

# Ordered (version, sql) pairs. Applied once each by db.ensure_schema and
# recorded in schema_version. Never edit a released entry; append a new one.

SCHEMA_V1 = r"""
-- Catalogue
CREATE TABLE IF NOT EXISTS perfumes (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  volume_ml INTEGER,
  estimated_decants_per_bottle INTEGER,
  is_out_of_stock INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Purchase events sharing logistics cost
CREATE TABLE IF NOT EXISTS stock_shipments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  shipment_name TEXT,
  transport_cost REAL NOT NULL DEFAULT 0,
  other_expenses REAL NOT NULL DEFAULT 0,
  total_additional_expenses REAL NOT NULL DEFAULT 0,  -- transport + other
  purchase_date TEXT NOT NULL,                         -- ISO date
  funded_from TEXT NOT NULL DEFAULT 'sales',           -- sales / capital
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- One perfume bought within a shipment (unit of cost recovery)
CREATE TABLE IF NOT EXISTS stock_groups (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  shipment_id INTEGER NOT NULL,
  perfume_id INTEGER NOT NULL,
  quantity INTEGER NOT NULL,
  buying_cost_per_bottle REAL NOT NULL,
  subtotal_cost REAL NOT NULL,
  remaining_quantity INTEGER NOT NULL,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  CHECK (remaining_quantity >= 0 AND remaining_quantity <= quantity),
  FOREIGN KEY (shipment_id) REFERENCES stock_shipments(id),
  FOREIGN KEY (perfume_id) REFERENCES perfumes(id)
);

CREATE TABLE IF NOT EXISTS sales (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  customer_name TEXT,
  payment_method TEXT NOT NULL,
  total_amount REAL NOT NULL,
  amount_paid REAL NOT NULL DEFAULT 0,
  debt_amount REAL NOT NULL DEFAULT 0,
  sale_date TEXT NOT NULL,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sale_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sale_id INTEGER NOT NULL,
  perfume_id INTEGER NOT NULL,
  stock_group_id INTEGER NOT NULL,
  sale_type TEXT NOT NULL,               -- full_bottle / decant
  quantity INTEGER NOT NULL,
  unit_price REAL NOT NULL,
  subtotal REAL NOT NULL,
  FOREIGN KEY (sale_id) REFERENCES sales(id),
  FOREIGN KEY (perfume_id) REFERENCES perfumes(id),
  FOREIGN KEY (stock_group_id) REFERENCES stock_groups(id)
);

-- Cumulative decant counters, one row per batch
CREATE TABLE IF NOT EXISTS decant_tracking (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  stock_group_id INTEGER NOT NULL UNIQUE,
  perfume_id INTEGER NOT NULL,
  decants_sold INTEGER NOT NULL DEFAULT 0,
  bottles_sold INTEGER NOT NULL DEFAULT 0,
  bottles_done INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (stock_group_id) REFERENCES stock_groups(id),
  FOREIGN KEY (perfume_id) REFERENCES perfumes(id)
);

-- Append-only bottle completions
CREATE TABLE IF NOT EXISTS decant_bottle_logs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  stock_group_id INTEGER NOT NULL,
  perfume_id INTEGER NOT NULL,
  bottle_sequence INTEGER NOT NULL,
  decants_obtained INTEGER NOT NULL,
  completion_source TEXT NOT NULL,       -- auto / manual
  completed_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  UNIQUE (stock_group_id, bottle_sequence),
  FOREIGN KEY (stock_group_id) REFERENCES stock_groups(id),
  FOREIGN KEY (perfume_id) REFERENCES perfumes(id)
);

-- Written-off bottles (audit)
CREATE TABLE IF NOT EXISTS deleted_bottles (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  stock_group_id INTEGER NOT NULL,
  perfume_id INTEGER NOT NULL,
  quantity_removed INTEGER NOT NULL,
  reason TEXT NOT NULL DEFAULT 'out_of_stock',
  note TEXT,
  removed_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (stock_group_id) REFERENCES stock_groups(id),
  FOREIGN KEY (perfume_id) REFERENCES perfumes(id)
);

-- Auxiliary consumables (decant containers, polythene, packaging)
CREATE TABLE IF NOT EXISTS custom_inventory_categories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  code TEXT NOT NULL UNIQUE,
  description TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS custom_inventory_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  category TEXT NOT NULL,
  unit_label TEXT NOT NULL DEFAULT 'piece',
  default_ml INTEGER,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (category) REFERENCES custom_inventory_categories(code)
);

CREATE TABLE IF NOT EXISTS custom_inventory_stock_entries (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  shipment_id INTEGER,
  item_id INTEGER NOT NULL,
  quantity_added INTEGER NOT NULL,
  remaining_quantity INTEGER NOT NULL,
  unit_cost REAL NOT NULL DEFAULT 0,
  purchase_date TEXT NOT NULL,
  note TEXT,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  CHECK (remaining_quantity >= 0 AND remaining_quantity <= quantity_added),
  FOREIGN KEY (shipment_id) REFERENCES stock_shipments(id),
  FOREIGN KEY (item_id) REFERENCES custom_inventory_items(id)
);

CREATE TABLE IF NOT EXISTS debt_payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sale_id INTEGER NOT NULL,
  amount_paid REAL NOT NULL,
  payment_date TEXT NOT NULL,
  payment_method TEXT NOT NULL,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (sale_id) REFERENCES sales(id)
);

CREATE TABLE IF NOT EXISTS expenses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  description TEXT NOT NULL,
  amount REAL NOT NULL,
  category TEXT,
  expense_date TEXT NOT NULL,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS investments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  description TEXT NOT NULL,
  amount REAL NOT NULL,
  investment_date TEXT NOT NULL,
  source_shipment_id INTEGER,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS cash_adjustments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,                    -- liquid_cash / capital
  previous_amount REAL NOT NULL,
  new_amount REAL NOT NULL,
  adjustment REAL NOT NULL,
  reason TEXT,
  adjusted_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_stock_groups_shipment ON stock_groups(shipment_id);
CREATE INDEX IF NOT EXISTS idx_sale_items_sale ON sale_items(sale_id);
CREATE INDEX IF NOT EXISTS idx_sale_items_group ON sale_items(stock_group_id);
CREATE INDEX IF NOT EXISTS idx_sales_date ON sales(sale_date);
CREATE INDEX IF NOT EXISTS idx_bottle_logs_group ON decant_bottle_logs(stock_group_id);
CREATE INDEX IF NOT EXISTS idx_custom_entries_item ON custom_inventory_stock_entries(item_id, purchase_date);
"""

# Explicit manual / shipment_capital discriminator on investments.
# Legacy rows are classified once here, by link or by generated description.
SCHEMA_V2 = r"""
ALTER TABLE investments ADD COLUMN origin TEXT NOT NULL DEFAULT 'manual';

UPDATE investments
SET origin = 'shipment_capital'
WHERE source_shipment_id IS NOT NULL
   OR description LIKE 'Stock purchase (capital)%';

CREATE UNIQUE INDEX IF NOT EXISTS idx_investments_shipment
  ON investments(source_shipment_id) WHERE source_shipment_id IS NOT NULL;
"""

MIGRATIONS: list[tuple[int, str]] = [
    (1, SCHEMA_V1),
    (2, SCHEMA_V2),
]

# Parent-before-child; reverse it to delete.
TABLE_ORDER: list[str] = [
    "perfumes",
    "custom_inventory_categories",
    "stock_shipments",
    "custom_inventory_items",
    "stock_groups",
    "sales",
    "decant_tracking",
    "decant_bottle_logs",
    "deleted_bottles",
    "sale_items",
    "custom_inventory_stock_entries",
    "debt_payments",
    "expenses",
    "investments",
    "cash_adjustments",
]
