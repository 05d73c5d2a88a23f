"""
Error handling for the agent loop
"""

from .error_handler import ErrorHandler

__all__ = ["ErrorHandler"]
