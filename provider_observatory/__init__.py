"""
Provider Observatory.

Records AI-provider token usage from intercepted HTTP traffic and publishes
externally sourced data with a verifiable integrity manifest.
"""

__version__ = "0.1.0"
