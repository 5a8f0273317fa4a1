"""
Profit-share distribution.

When a copied position closes in profit, 1% goes to whoever listed the
copied trader in the registry and 1% to the platform wallet. Each leg is a
separate transfer; a trade id is never paid twice, even across retries.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, List, Optional
import asyncio
import logging

import httpx

from mirrortrader.adapters.base import ListerLookup, TransferHandler
from mirrortrader.config import FeeConfig
from mirrortrader.models import FeeDistributionEvent

logger = logging.getLogger(__name__)

USDC_PRECISION = Decimal("0.000001")
PROFIT_PRECISION = Decimal("0.0001")            # 1% of this is exact in USDC units

LISTER_LEG = "lister"
PLATFORM_LEG = "platform"


class RegistryClient:
    """HTTP client for the trader registry (who listed which wallet)."""

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None):
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=10.0)

    async def get_lister(self, trader: str) -> Optional[str]:
        try:
            resp = await self._http.get(f"{self._base_url}/registry/{trader}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json().get("listedBy") or None
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Registry lookup failed for {trader[:10]}: {e}")
            return None

    async def get_registry(self) -> List[Dict[str, Any]]:
        try:
            resp = await self._http.get(f"{self._base_url}/registry")
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch registry: {e}")
            return []

    async def add_wallet(self, target: str, finder: str) -> Dict[str, Any]:
        """List a trader wallet on behalf of `finder`."""
        try:
            resp = await self._http.post(
                f"{self._base_url}/registry",
                json={"address": target, "listedBy": finder},
            )
            resp.raise_for_status()
            return {"success": True, "profile": resp.json().get("profile")}
        except httpx.HTTPStatusError as e:
            try:
                message = e.response.json().get("error", str(e))
            except ValueError:
                message = str(e)
            return {"success": False, "message": message}
        except httpx.HTTPError as e:
            return {"success": False, "message": str(e)}

    async def aclose(self) -> None:
        await self._http.aclose()


class FeeDistributor:
    """
    Pays the lister and platform shares of realized profit.

    Settled legs are remembered per trade id, so calling distribute() again
    after a failed leg only retries the missing leg.
    """

    def __init__(self, lister_lookup: ListerLookup, transfer: TransferHandler, config: FeeConfig):
        self._lookup = lister_lookup
        self._transfer = transfer
        self._config = config
        self._settled: Dict[str, Dict[str, str]] = {}   # trade_id -> leg -> settlement ref
        self._completed: set = set()
        self._lock = asyncio.Lock()

    def is_completed(self, trade_id: str) -> bool:
        return trade_id in self._completed

    def is_withheld(self, trade_id: str) -> bool:
        """True when a leg failed and the trade still owes fees."""
        return trade_id in self._settled

    async def distribute(
        self, trade_id: str, profit: Decimal, copied_trader: str
    ) -> Optional[FeeDistributionEvent]:
        """
        Returns the event once both legs have settled, else None.

        Never raises on transfer failure; the failed leg is logged and
        withheld until is_withheld() clears.
        """
        async with self._lock:
            return await self._distribute(trade_id, profit, copied_trader)

    async def _distribute(
        self, trade_id: str, profit: Decimal, copied_trader: str
    ) -> Optional[FeeDistributionEvent]:
        if profit <= 0 or trade_id in self._completed:
            return None

        lister = await self._lookup.get_lister(copied_trader)
        if not lister:
            logger.debug(f"No lister for {copied_trader[:10]}; no fees on {trade_id}")
            return None

        profit = profit.quantize(PROFIT_PRECISION, rounding=ROUND_DOWN)
        lister_fee = (profit * self._config.lister_pct).quantize(USDC_PRECISION, rounding=ROUND_DOWN)
        platform_fee = (profit * self._config.platform_pct).quantize(USDC_PRECISION, rounding=ROUND_DOWN)
        if lister_fee < self._config.dust_threshold:
            return None

        logger.info(
            f"Distributing fees on ${profit:.2f} profit: "
            f"finder {lister[:6]} ${lister_fee:.2f}, platform ${platform_fee:.2f}"
        )

        legs = self._settled.setdefault(trade_id, {})
        for leg, address, amount in (
            (LISTER_LEG, lister, lister_fee),
            (PLATFORM_LEG, self._config.platform_wallet, platform_fee),
        ):
            if leg in legs:
                continue
            try:
                legs[leg] = await self._transfer.transfer(address, amount)
            except Exception as e:
                logger.error(f"Fee transfer ({leg}) failed for {trade_id}: {e}")
                return None

        self._completed.add(trade_id)
        del self._settled[trade_id]
        logger.info(f"Fees sent for {trade_id}: {legs[LISTER_LEG]}, {legs[PLATFORM_LEG]}")

        return FeeDistributionEvent(
            trade_id=trade_id,
            profit_amount=profit,
            lister_fee=lister_fee,
            platform_fee=platform_fee,
            lister_address=lister,
            platform_address=self._config.platform_wallet,
            lister_tx=legs[LISTER_LEG],
            platform_tx=legs[PLATFORM_LEG],
        )
