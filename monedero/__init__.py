"""
Monedero - Multi-Currency Valuation Engine

Tracks personal expenses across USD, VES, USDT and EUR in a
high-inflation economy and layers a financial advisor on top.

DESIGN PRINCIPLES:
1. Equivalents are frozen at write time, never recomputed on read
2. The rate log is append-only
3. Upstream failures degrade to stale data, never to a crash
4. Nothing reaches the AI without anonymization and a PII check
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Monedero Team"
