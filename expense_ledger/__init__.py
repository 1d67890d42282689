"""
Expense Ledger - Source Package

A personal/household expense tracker core: receipt photos go through
OCR and a local LLM, land in review, and become confirmed expenses
normalized to a base currency.

DESIGN PRINCIPLES:
1. Every expense state is an always-valid record
2. Extraction failures become data, never dead ends
3. No silent currency mismatches
4. Every transition is a pure function; storage only sees its output
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
