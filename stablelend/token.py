"""
Fungible Asset Model for the stablelend engine.

This module simulates the fungible-asset contracts the lending pool moves
funds through: the stable asset lenders deposit and borrowers draw, and the
collateral asset borrowers lock. It handles minting, transfers and
allowance-based pulls of tokens.

The lending pool only ever calls `balance_of`, `transfer` and
`transfer_from`; minting and approvals are for setting up simulations and
tests.
"""

from .errors import InvariantViolation, ValidationError


class Token:
    """
    Simulates a fungible-asset contract with native decimal precision.
    """

    def __init__(self, symbol, decimals):
        self.symbol = symbol
        self.decimals = decimals

        # Total token supply
        self.total_supply = 0

        # Mapping of addresses to token balances
        self.balances = {}

        # Mapping of (owner, spender) to the amount spender may pull
        self.allowances = {}

    def balance_of(self, account):
        """Returns the token balance of the given account."""
        return self.balances.get(account, 0)

    def allowance(self, owner, spender):
        """Returns the amount `spender` may still pull from `owner`."""
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner, spender, amount):
        """
        Allows `spender` to pull up to `amount` tokens from `owner`.

        Returns:
            True if successful
        """
        if amount < 0:
            raise ValidationError("Allowance must not be negative")
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender, recipient, amount):
        """
        Transfers tokens from sender to recipient.

        Args:
            sender: Address sending the tokens
            recipient: Address receiving the tokens
            amount: Amount of tokens to transfer

        Returns:
            True if successful
        """
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        sender_balance = self.balances.get(sender, 0)
        if sender_balance < amount:
            raise InvariantViolation(
                f"Insufficient {self.symbol} balance: {sender} holds {sender_balance}, needs {amount}"
            )

        # Update balances
        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        return True

    def transfer_from(self, spender, owner, recipient, amount):
        """
        Pulls tokens from `owner` to `recipient` using `spender`'s allowance.

        Returns:
            True if successful
        """
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InvariantViolation(
                f"Insufficient {self.symbol} allowance: {spender} may pull {allowed} from {owner}, needs {amount}"
            )
        self.transfer(owner, recipient, amount)
        self.allowances[(owner, spender)] = allowed - amount
        return True

    def mint(self, recipient, amount):
        """
        Mints new tokens to the recipient account.

        Returns:
            True if successful
        """
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.total_supply += amount
        return True

    # --- Transaction support ---

    def checkpoint(self, accounts):
        """
        Captures the supply and the balances and allowances among `accounts`
        so a failed transaction can roll them back.
        """
        balances = {account: self.balances.get(account) for account in accounts}
        allowances = {
            (owner, spender): self.allowances.get((owner, spender))
            for owner in accounts
            for spender in accounts
        }
        return self.total_supply, balances, allowances

    def rollback(self, checkpoint):
        """Restores state captured by `checkpoint`."""
        self.total_supply, balances, allowances = checkpoint
        for account, balance in balances.items():
            if balance is None:
                self.balances.pop(account, None)
            else:
                self.balances[account] = balance
        for key, allowed in allowances.items():
            if allowed is None:
                self.allowances.pop(key, None)
            else:
                self.allowances[key] = allowed
