"""
Exceptions raised while driving the sweep.
"""

class SweepError(Exception):
    pass

class BackendError(SweepError):
    pass

class BackendConnectionError(BackendError):
    pass

class ObjectHandleError(BackendError):
    pass

class TrialLogError(SweepError):
    pass
