"""
Statement upload → Extraction → Reconciliation → Scored financial record

A deterministic, testable pipeline that turns an uploaded bank statement
(a PDF or a set of photographed pages) into normalized transactions, a
spending summary, detected recurring charges and an explainable trust score.
"""

__version__ = "0.1.0"
