"""
Tag Sync - Source Package

The tag synchronization core of a personal finance tracker.
Turns the free-form, comma-separated tag string a user types next to an
expense or income into persisted tags and record-tag links.

DESIGN PRINCIPLES:
1. The record is saved first; tags are a best-effort secondary step
2. Partial failure is reported, never hidden and never raised
3. "Already exists" is success, not failure
4. Every remote call goes through one retry/fallback executor
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Tag Sync Team"
