"""
Core modules for Provider Observatory.

This package contains provider classification, health checks, integrity
digests and usage aggregation.
"""
