"""
Summa backend: turns e-banking screenshots into value snapshots.
"""

__version__ = "0.1.0"
