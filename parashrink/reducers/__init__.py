"""
Reference reducers speaking the parashrink reducer protocol.

Each module is runnable as ``python -m parashrink.reducers.<name> SEED``.
"""

from .protocol import serve
