"""
Workflow Kernel

A multi-party, multi-step approval workflow engine with:
- Versioned, immutable-once-used templates
- Revision-scoped, append-only response ledger
- ALL / ANY / K_OF_N completion rules
- Per-workflow serialized, atomic step transitions
- Append-only history log
"""

__version__ = "0.1.0"
