"""
Settings singleton

Usage:
    from buildledger.core.config import settings
"""
from buildledger.core.settings import get_settings

settings = get_settings()
