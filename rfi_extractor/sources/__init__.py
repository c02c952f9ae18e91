"""
Input sources for the extraction pipeline
"""

from .unit_loader import load_units

__all__ = ['load_units']
