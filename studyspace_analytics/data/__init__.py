"""
Data Generation Module
"""
from .generators import GeneratedDataset, StudySpaceDataGenerator

__all__ = [
    "GeneratedDataset",
    "StudySpaceDataGenerator",
]
