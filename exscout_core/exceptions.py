"""
exscout exceptions
"""


class ExscoutError(Exception):
    """Base exception for exscout"""
    pass


class PatternStoreError(ExscoutError):
    """Learned pattern store is unreadable or unwritable"""
    pass


class ProbeError(ExscoutError):
    """A single detection tier failed internally"""
    pass
