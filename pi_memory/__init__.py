"""
pi-memory - session log, summarization and project memory for the pi coding agent
"""

__version__ = "0.1.0"
__logo__ = "π"
