"""
Error taxonomy for the wager engine.

Validation errors are raised before any state is touched. Consistency
errors come from the ledger mid-operation, after partial work has been
rolled back. Persistence errors are logged by the context and never halt
the engine.
"""


class WagerError(Exception):
    code = "wager_error"
    status_code = 400
    message = "Wager operation failed"

    def __init__(self, message: str = None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.details}


# ==================== Validation ====================

class WagerValidationError(WagerError):
    code = "validation_error"


class InvalidAmount(WagerValidationError):
    code = "invalid_amount"
    message = "Amount must be a positive whole number"


class InsufficientBalance(WagerValidationError):
    code = "insufficient_balance"
    message = "Insufficient balance"


class BelowMinimum(WagerValidationError):
    code = "below_minimum"
    message = "Amount is below the minimum entry"


class AboveMaximum(WagerValidationError):
    code = "above_maximum"
    message = "Amount is above the maximum entry"


class SelfDuel(WagerValidationError):
    code = "self_duel"
    message = "You cannot duel yourself"


class AlreadySentRequest(WagerValidationError):
    code = "already_sent_request"
    status_code = 409
    message = "You already have sent a request"


class AlreadyPendingRequest(WagerValidationError):
    code = "already_pending_request"
    status_code = 409
    message = "You already have a pending request"


class AlreadyInDuel(WagerValidationError):
    code = "already_in_duel"
    status_code = 409
    message = "Player is already in a duel"


class NoPendingRequest(WagerValidationError):
    code = "no_pending_request"
    status_code = 404
    message = "You do not have any pending requests"


class NoActiveJackpot(WagerValidationError):
    code = "no_active_jackpot"
    status_code = 409
    message = "There is no active jackpot"


# ==================== Consistency / infrastructure ====================

class LedgerError(WagerError):
    code = "ledger_error"
    status_code = 503
    message = "Balance service failed"


class PersistenceError(WagerError):
    code = "persistence_error"
    status_code = 500
    message = "Could not persist wager state"


class EngineNotReady(WagerError):
    code = "engine_not_ready"
    status_code = 503
    message = "Wager engine has not finished startup recovery"
