"""Application package for the BTC price cache service.

Holds configuration, logging, the upstream price pipeline and the
single-flight price cache served by ``server.py``.
"""
