"""
Roof Claim Auditor — Extraction, reconciliation and rule checks for roofing claims.

Architecture: OCR → Priority fields → Full extraction → Merge → Page validation → Rules
Philosophy:  Trust the AI to read. Trust only code to decide.
"""

__version__ = "1.0.0"
