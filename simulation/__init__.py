"""Simulation Package.

Asyncio frame loop around the flux engine and result persistence.
"""
