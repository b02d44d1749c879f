"""
Study-Space Analytics

Customer segmentation and marketing-impact analytics for a chain of
pay-per-use study spaces.
"""

__version__ = "1.0.0"
