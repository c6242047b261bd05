"""
Storefront checkout pipeline: payment verification, redundant order storage
and conversion tracking
"""

__version__ = "0.1.0"
