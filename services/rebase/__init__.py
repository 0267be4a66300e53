from .scheduler import AttemptOutcome, RebaseScheduler

__all__ = ["RebaseScheduler", "AttemptOutcome"]
