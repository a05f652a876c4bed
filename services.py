import structlog

from accounts import Account
from errors import AccountError
from repositories import AccountRegistry

# Configure structured logging
logger = structlog.get_logger()


class AccountService:
    """Request-level operations: resolve the account, then run the operation on it."""

    def __init__(self, registry: AccountRegistry):
        self.registry = registry

    def create_account(self) -> Account:
        account = self.registry.create_account()
        logger.info("Account created", account_id=account.id)
        return account

    def deposit(self, account_id: int, amount: float) -> float:
        logger.info("Processing deposit", account_id=account_id, amount=amount)
        try:
            account = self.registry.lookup(account_id)
            new_balance = account.deposit(amount)
        except AccountError as e:
            self._log_failure("deposit", account_id, amount, e)
            raise

        logger.debug("Deposit processed", account_id=account_id, new_balance=new_balance)
        return new_balance

    def withdraw(self, account_id: int, amount: float) -> float:
        logger.info("Processing withdrawal", account_id=account_id, amount=amount)
        try:
            account = self.registry.lookup(account_id)
            new_balance = account.withdraw(amount)
        except AccountError as e:
            self._log_failure("withdraw", account_id, amount, e)
            raise

        logger.debug("Withdrawal processed", account_id=account_id, new_balance=new_balance)
        return new_balance

    def get_balance(self, account_id: int) -> float:
        try:
            account = self.registry.lookup(account_id)
        except AccountError as e:
            self._log_failure("get_balance", account_id, None, e)
            raise
        return account.get_balance()

    def accounts_count(self) -> int:
        return self.registry.count()

    def _log_failure(self, operation: str, account_id: int, amount, error: AccountError) -> None:
        logger.warning(
            "Account request failed",
            operation=operation,
            account_id=account_id,
            amount=repr(amount),
            error_code=error.error_code,
            detail=str(error)
        )


# Factory function for dependency injection
def get_account_service(registry: AccountRegistry) -> AccountService:
    return AccountService(registry)
