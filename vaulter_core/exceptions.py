"""Exception hierarchy for vault operations.

Every exception aborts the whole operation; the vault restores its state before re-raising.
"""


class VaultError(Exception):
    """Base class for all vault failures."""


class ValidationError(VaultError, ValueError):
    """Input rejected before any state was touched (amounts, ratios, parameters)."""


class ScriptFormatError(ValidationError):
    """Redeem script does not match the locktime template."""


class ConsistencyError(VaultError):
    """Submitted data contradicts what the vault or the registry already knows."""


class DuplicateStakeError(ConsistencyError):
    """A stake position for this transaction id was already recorded."""


class UnknownDepositError(ConsistencyError):
    """The deposit registry has no (or a zero) record for the transaction id."""


class LocktimeMismatchError(ConsistencyError):
    """The script locktime differs from the locktime recorded by the registry."""


class AuthorizationError(VaultError, PermissionError):
    """Caller lacks the required capability."""


class InvalidSignatureError(AuthorizationError):
    """Ownership proof signature does not match the supplied public key."""


class PausedError(AuthorizationError):
    """User-facing operations are paused."""


class ExternalCallError(VaultError, RuntimeError):
    """An external collaborator call failed."""


class DelegationError(ExternalCallError):
    """The delegation agent rejected a delegate or undelegate call."""


class RoundNotReadyError(ExternalCallError):
    """The reward oracle has not advanced past the vault's current round."""


class InsufficientFundsError(VaultError):
    """Balance, delegation or pool is too small to satisfy the request in full."""


class WithdrawalLockedError(VaultError):
    """Withdrawal attempted in the same round as the holder's last deposit."""


class ReentrancyError(VaultError):
    """A mutating entry point was entered while another one is in progress."""
