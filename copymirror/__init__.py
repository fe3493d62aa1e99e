"""
Polymarket Copy Mirror
======================
Watches external wallets on Polymarket and mirrors their fills onto a
local account.

Features:
- Polling fill detection with per-wallet cursors and dedup
- Percent / fixed sizing with optional sell-all override
- CLOB execution with a raw-transport fallback and dry-run mode
"""

__version__ = "1.0.0"
