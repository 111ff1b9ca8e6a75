"""
Shared helpers: request/key types, JSON logging, small timing utilities.
"""
