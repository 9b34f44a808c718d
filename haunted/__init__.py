"""
Haunted House - timed smart-home effects for the Halloween video demo.
"""

__version__ = "0.1.0"
