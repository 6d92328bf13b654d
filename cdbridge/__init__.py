"""
CDBridge - Git provider webhooks republished as CDEvents.
"""

__version__ = "1.0.0"
