"""
Data Generation Module
"""
from .generators import NestedOrderGenerator, NoiseProfile, generate_dataset, write_ndjson

__all__ = [
    "NestedOrderGenerator",
    "NoiseProfile",
    "generate_dataset",
    "write_ndjson",
]
