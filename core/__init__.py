"""Core module - shared infrastructure for the ITC reconciliation engine.

This module contains the canonical value types, settings, structured
logging and audit components. It knows nothing about GSTR-2B sections or
match statuses; those live in /statement_parser/ and /reconciliation/.
"""

__version__ = "1.0.0"
