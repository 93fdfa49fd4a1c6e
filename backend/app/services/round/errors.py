from typing import List, Optional


class RoundValidationError(ValueError):
    """Caller supplied a malformed wallet or a non-positive amount."""


class StakeSubmitError(Exception):
    """Base class for failures moving a stake on chain."""

    kind = 'submit'


class StakeConfigurationError(StakeSubmitError):
    kind = 'configuration'


class StakeSigningError(StakeSubmitError):
    kind = 'signing'


class StakeSubmissionError(StakeSubmitError):
    """Send or confirmation failed; the transfer outcome is unknown."""

    kind = 'submission'

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


class StakeProgramError(StakeSubmitError):
    """The on-chain program rejected the instruction."""

    kind = 'program'

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])
