"""
letta-proxy: chat completion proxy with Letta agent memory injection.
"""

__version__ = "0.1.0"
