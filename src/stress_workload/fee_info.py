"""Gas price data structures."""

from dataclasses import dataclass

from web3 import Web3


@dataclass(frozen=True)
class FeeInfo:
    """Gas price chosen for one submission.

    `reported` is what eth_gasPrice answered (None when the node gave nothing
    usable); `gas_price` is what we actually sign with.
    """

    gas_price: int  # wei
    reported: int | None
    fallback: bool

    @classmethod
    def from_node(cls, reported: int | None, floor: int) -> "FeeInfo":
        if not reported or reported <= 0:
            return cls(gas_price=floor, reported=None, fallback=True)
        return cls(gas_price=int(reported), reported=int(reported), fallback=False)

    @property
    def gwei(self) -> str:
        return f"{Web3.from_wei(self.gas_price, 'gwei'):f}"
