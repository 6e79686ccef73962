"""
Focus Blocks - task auto-scheduler and commitment lifecycle.
"""

__version__ = "1.0.0"
