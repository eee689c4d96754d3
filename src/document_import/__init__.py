"""
Upload → Classification → Extraction → Human review → Domain records

An asynchronous, testable pipeline that turns uploaded bank statements,
invoices and receipts (PDF, image, XML, CSV) into reviewed, duplicate-safe
financial records.
"""

__version__ = "0.1.0"
