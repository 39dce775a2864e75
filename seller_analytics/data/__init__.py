"""
Data Generation Module
"""
from .generators import CatalogGenerator, EventGenerator

__all__ = [
    "CatalogGenerator",
    "EventGenerator",
]
