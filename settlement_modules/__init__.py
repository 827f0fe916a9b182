"""
Settlement Modules.

Thin orchestration layers over the settlement kernel and engines.
Each module contains:
- Domain models (the nouns)
- Editable session state (selection sets, deduction trackers)
- Submission building
- A session service tying them together

Modules:
- Receipts: multi-source customer payments against outstanding invoices

Actual allocation logic lives in the engines.
"""

from settlement_modules import receipts

__all__ = ["receipts"]
