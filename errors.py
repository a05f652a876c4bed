class AccountError(Exception):
    """Base class for account operation failures."""

    error_code = "ACCOUNT_ERROR"


class InvalidAmountError(AccountError):
    """Raised when an amount is not a finite, strictly positive number."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount):
        self.amount = amount
        super().__init__("Amount must be greater than zero")


class InsufficientFundsError(AccountError):
    """Raised when a withdrawal would drive the balance negative."""

    error_code = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: int, amount: float, balance: float):
        self.account_id = account_id
        self.amount = amount
        self.balance = balance
        super().__init__("Insufficient funds")


class AccountNotFoundError(AccountError):
    """Raised when an account id was never issued by the registry."""

    error_code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__("Account not found")
