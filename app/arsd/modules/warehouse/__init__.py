"""
Warehouse module.

- Delivery receipts (DR) record materials received at a project site.
- Release forms record materials issued from the site warehouse.
- Both are created locked; only inspectors, PMs and superadmins may unlock.
- Stock levels are derived on read from IPOW quantities, DR lines and release lines.
"""
