"""Fee distribution and fund throttling."""

from mirrortrader.funds.fees import FeeDistributor, RegistryClient
from mirrortrader.funds.throttle import FundThrottle, ProfitSweeper

__all__ = ["FeeDistributor", "RegistryClient", "FundThrottle", "ProfitSweeper"]
