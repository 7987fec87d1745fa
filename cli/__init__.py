"""
UniChat Profile CLI Package

Command line driver for the profile registry.
"""

__version__ = "1.0.0"
