"""
Polymarket exchange adapter.

- CLOB (py-clob-client): order books, FOK market orders, market status
- Data API (httpx): public activity and positions
- Polygon RPC (web3): USDC balance of the proxy wallet, USDC transfers

py-clob-client is synchronous; its calls run in a worker thread.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import asyncio
import logging

import httpx
from web3 import Web3

from mirrortrader.config import PolymarketConfig
from mirrortrader.execution.liquidity import assess_order_book
from mirrortrader.models import (
    LiquidityMetrics,
    OrderBook,
    OrderRequest,
    OrderResponse,
    PositionSnapshot,
    Side,
    to_decimal,
)

logger = logging.getLogger(__name__)

# ERC-20 ABI for balanceOf
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    }
]

ERC20_TRANSFER_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    }
]

USDC_DECIMALS = 6


class PolymarketAdapter:
    """
    ExchangeAdapter backed by the Polymarket CLOB, Data API and Polygon RPC.

    The CLOB client is created lazily on the first trading call so that
    read-only use (monitoring, previews) needs no private key.
    """

    def __init__(
        self,
        config: PolymarketConfig,
        funder: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config
        self._funder = funder
        self._http = http_client or httpx.AsyncClient(
            base_url=config.data_api_url,
            timeout=config.request_timeout_seconds,
        )
        self._clob = None
        self._w3: Optional[Web3] = None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def _get_clob(self):
        if self._clob is None:
            from py_clob_client.client import ClobClient

            if not self._config.private_key:
                raise RuntimeError("PRIVATE_KEY is required for CLOB trading")

            client = ClobClient(
                host=self._config.clob_host,
                key=self._config.private_key,
                chain_id=self._config.chain_id,
                signature_type=self._config.signature_type,
                funder=self._funder,
            )
            client.set_api_creds(client.create_or_derive_api_creds())
            self._clob = client
            logger.info(f"CLOB client initialized for {self._config.clob_host}")
        return self._clob

    def _get_web3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self._config.rpc_url))
        return self._w3

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Balances and positions
    # ------------------------------------------------------------------

    async def fetch_balance(self, address: str) -> Decimal:
        return await asyncio.to_thread(self._usdc_balance, address)

    def _usdc_balance(self, address: str) -> Decimal:
        w3 = self._get_web3()
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(self._config.usdc_address),
            abi=ERC20_BALANCE_ABI,
        )
        raw = contract.functions.balanceOf(Web3.to_checksum_address(address)).call()
        return Decimal(raw) / Decimal(10 ** USDC_DECIMALS)

    async def get_positions(self, address: str) -> List[PositionSnapshot]:
        resp = await self._http.get(
            "/positions",
            params={"user": address, "sizeThreshold": 0.01, "limit": 500},
        )
        resp.raise_for_status()

        positions = []
        for raw in resp.json():
            positions.append(
                PositionSnapshot(
                    token_id=str(raw.get("asset", "")),
                    balance=to_decimal(raw.get("size")),
                    value_usd=to_decimal(raw.get("currentValue")),
                    market_id=raw.get("conditionId"),
                )
            )
        return positions

    async def fetch_public_trades(self, address: str, limit: int = 20) -> List[Dict[str, Any]]:
        resp = await self._http.get(
            "/activity",
            params={"user": address, "limit": limit, "type": "TRADE"},
        )
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_order_book(self, token_id: str) -> OrderBook:
        summary = await asyncio.to_thread(self._get_clob().get_order_book, token_id)
        bids = [(level.price, level.size) for level in (summary.bids or [])]
        asks = [(level.price, level.size) for level in (summary.asks or [])]
        return OrderBook.from_levels(
            token_id,
            bids=bids,
            asks=asks,
            min_order_size=getattr(summary, "min_order_size", None),
        )

    async def get_liquidity_metrics(self, token_id: str, side: Side) -> LiquidityMetrics:
        book = await self.get_order_book(token_id)
        return assess_order_book(book, side)

    async def is_market_open(self, market_id: str) -> bool:
        market = await asyncio.to_thread(self._get_clob().get_market, market_id)
        if not market:
            return False
        if market.get("closed"):
            return False
        return bool(market.get("accepting_orders", market.get("active", True)))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(self, request: OrderRequest) -> OrderResponse:
        try:
            response = await asyncio.to_thread(self._post_fok, request)
        except Exception as e:
            logger.warning(f"Order submission failed for {request.token_id[:12]}: {e}")
            return OrderResponse(success=False, error=str(e))
        return self._parse_response(request, response)

    def _post_fok(self, request: OrderRequest) -> Dict[str, Any]:
        from py_clob_client.clob_types import MarketOrderArgs, OrderType

        client = self._get_clob()

        # BUY amounts are USDC, SELL amounts are shares
        if request.side == Side.BUY:
            amount = float(request.shares * request.price)
        else:
            amount = float(request.shares)

        order_args = MarketOrderArgs(
            token_id=request.token_id,
            amount=amount,
            side=request.side.value,
            price=float(request.price),
        )
        signed_order = client.create_market_order(order_args)
        return client.post_order(signed_order, orderType=OrderType.FOK)

    @staticmethod
    def _parse_response(request: OrderRequest, response: Any) -> OrderResponse:
        if not isinstance(response, dict):
            return OrderResponse(success=False, error=f"Unexpected response: {response}")

        if not response.get("success"):
            return OrderResponse(
                success=False,
                order_id=response.get("orderID"),
                error=response.get("errorMsg") or f"Order status: {response.get('status', 'unknown')}",
            )

        # makingAmount is what we gave, takingAmount what we received
        try:
            making = to_decimal(response.get("makingAmount"))
            taking = to_decimal(response.get("takingAmount"))
        except InvalidOperation:
            making = taking = Decimal("0")

        if request.side == Side.BUY:
            shares, usd = taking, making
        else:
            shares, usd = making, taking

        if shares <= 0:
            # Amounts missing from the response: FOK success means fully filled
            shares, usd = request.shares, request.notional

        return OrderResponse(
            success=True,
            shares_filled=shares,
            price_filled=usd / shares,
            order_id=response.get("orderID"),
        )


class UsdcTransfer:
    """
    Sends USDC from the signing key's own address.

    Serves as both the fee TransferHandler and the auto-cashout
    CashoutHandler. Returns the transaction hash once the receipt confirms.
    """

    GAS_LIMIT = 100000

    def __init__(self, config: PolymarketConfig, receipt_timeout: float = 120.0):
        if not config.private_key:
            raise ValueError("PRIVATE_KEY is required for USDC transfers")
        self._config = config
        self._receipt_timeout = receipt_timeout
        self._w3 = Web3(Web3.HTTPProvider(config.rpc_url))
        self._account = self._w3.eth.account.from_key(config.private_key)
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    async def transfer(self, to_address: str, amount: Decimal) -> str:
        # One transaction at a time keeps nonces sequential
        async with self._lock:
            return await asyncio.to_thread(self._send, to_address, amount)

    async def cashout(self, destination: str, amount: Decimal) -> str:
        return await self.transfer(destination, amount)

    def _send(self, to_address: str, amount: Decimal) -> str:
        w3 = self._w3
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(self._config.usdc_address),
            abi=ERC20_TRANSFER_ABI,
        )
        raw_amount = int(amount * Decimal(10 ** USDC_DECIMALS))
        tx = contract.functions.transfer(
            Web3.to_checksum_address(to_address), raw_amount
        ).build_transaction({
            "chainId": self._config.chain_id,
            "from": self._account.address,
            "nonce": w3.eth.get_transaction_count(self._account.address),
            "gas": self.GAS_LIMIT,
            "gasPrice": w3.eth.gas_price,
        })

        signed_tx = self._account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        if receipt["status"] != 1:
            raise RuntimeError(f"USDC transfer reverted: {tx_hash.hex()}")

        logger.info(f"Sent ${amount} USDC to {to_address[:10]} in block {receipt['blockNumber']}")
        return tx_hash.hex()
