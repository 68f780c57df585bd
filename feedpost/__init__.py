"""
Feedpost Backend

A FastAPI backend that ingests RSS/Atom feeds per owner.
Provides feed fetching, article normalization and assembly, and post listing.
"""

__version__ = "1.0.0"
