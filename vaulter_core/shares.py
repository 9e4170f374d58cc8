"""Fungible share ledger (vltCORE balances)."""

from dataclasses import dataclass, field

from vaulter_core.exceptions import InsufficientFundsError, ValidationError


@dataclass
class ShareLedger:
    """Holder -> balance mapping with mint, burn and transfer."""

    balances: dict[str, int] = field(default_factory=dict)
    total_supply: int = 0

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def mint(self, holder: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError(f"Cannot mint a negative amount: {amount}")
        self.balances[holder] = self.balance_of(holder) + amount
        self.total_supply += amount

    def burn(self, holder: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError(f"Cannot burn a negative amount: {amount}")
        balance = self.balance_of(holder)
        if amount > balance:
            raise InsufficientFundsError(f"Burn amount {amount} exceeds balance {balance} of {holder}")
        self.balances[holder] = balance - amount
        self.total_supply -= amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount <= 0:
            raise ValidationError("Transfer amount must be > 0")
        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientFundsError(f"Transfer amount {amount} exceeds balance {balance} of {sender}")
        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount

    def holders(self) -> list[str]:
        return [h for h, b in self.balances.items() if b > 0]
