"""
Settlement Kernel

Shared foundations for the receivables settlement subsystem:
- Typed, coded exceptions
- Structured JSON logging
- Two-decimal money precision helpers
- Injectable clock for debounce timing
"""

__version__ = "0.1.0"
