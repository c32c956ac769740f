"""
Player presence and badge consistency service.
"""

__version__ = "1.0.0"
