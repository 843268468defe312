"""
Visual recording and resilient replay of browser interactions.
"""

__version__ = "0.1.0"
