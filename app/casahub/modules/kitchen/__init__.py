"""
Kitchen module.

- Inventory: products stored in locations, optionally grouped by category
- Alerts: expiring soon, low stock, opened long ago
"""
