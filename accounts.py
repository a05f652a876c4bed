import math
import numbers
import threading
from datetime import datetime, timezone
from enum import Enum

import structlog

from errors import InsufficientFundsError, InvalidAmountError

logger = structlog.get_logger()


class OperationType(str, Enum):
    deposit = "deposit"
    withdraw = "withdraw"
    get_balance = "get_balance"


def validate_amount(amount) -> float:
    """Return ``amount`` as a float.

    Anything that is not a finite, strictly positive real number is rejected,
    including integers too large to represent as a float.
    """
    if isinstance(amount, bool) or not isinstance(amount, numbers.Real):
        raise InvalidAmountError(amount)
    try:
        value = float(amount)
    except OverflowError:
        raise InvalidAmountError(amount) from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmountError(amount)
    return value


class Account:
    """A single balance guarded by its own lock.

    Instances are created and owned by an account registry. Callers receive
    the live instance and operate on it directly; every operation takes the
    account lock for the whole read-modify-write of the balance and releases
    it before logging.
    """

    def __init__(self, account_id: int):
        if account_id < 1:
            raise ValueError(f"Account id must be positive, got {account_id}")
        self._id = account_id
        self._balance = 0.0
        self._lock = threading.Lock()

    @property
    def id(self) -> int:
        return self._id

    def __repr__(self) -> str:
        return f"Account(id={self._id})"

    def deposit(self, amount: float) -> float:
        """Add ``amount`` to the balance and return the new balance."""
        try:
            value = validate_amount(amount)
            with self._lock:
                new_balance = self._balance + value
                if not math.isfinite(new_balance):
                    raise InvalidAmountError(amount)
                self._balance = new_balance
        except InvalidAmountError as e:
            self._log_rejected(OperationType.deposit, amount, e)
            raise

        self._log_operation(OperationType.deposit, amount, new_balance)
        return new_balance

    def withdraw(self, amount: float) -> float:
        """Subtract ``amount`` from the balance and return the new balance.

        The funds check and the update happen under one lock acquisition, so
        no other operation can slip in between them.
        """
        try:
            value = validate_amount(amount)
            with self._lock:
                if value > self._balance:
                    raise InsufficientFundsError(self._id, amount, self._balance)
                self._balance -= value
                new_balance = self._balance
        except (InvalidAmountError, InsufficientFundsError) as e:
            self._log_rejected(OperationType.withdraw, amount, e)
            raise

        self._log_operation(OperationType.withdraw, amount, new_balance)
        return new_balance

    def get_balance(self) -> float:
        with self._lock:
            balance = self._balance
        self._log_operation(OperationType.get_balance, balance, balance)
        return balance

    def _log_operation(self, operation: OperationType, amount, balance: float) -> None:
        logger.info(
            "Account operation",
            account_id=self._id,
            operation=operation.value,
            amount=amount,
            balance=balance,
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    def _log_rejected(self, operation: OperationType, amount, error: Exception) -> None:
        logger.warning(
            "Account operation rejected",
            account_id=self._id,
            operation=operation.value,
            amount=repr(amount),
            error_code=getattr(error, "error_code", type(error).__name__),
            timestamp=datetime.now(timezone.utc).isoformat()
        )
