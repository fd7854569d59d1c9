"""
studioscheduler - session scheduling and resource allocation for studios.
"""

__version__ = "0.1.0"
