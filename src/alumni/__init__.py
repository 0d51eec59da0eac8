"""
Alumni Registry API

Registers former employees into the alumni network and decides, with minimal
human involvement, whether each applicant's identity can be trusted.
"""

__version__ = "0.1.0"
