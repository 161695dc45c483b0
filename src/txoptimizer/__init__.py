"""
TxOptimizer - Solana transaction optimization

Percentile-based priority fee estimation and Jito bundle submission with
retry, backoff and confirmation polling.

Example::

    from txoptimizer import TxOptimizerClient, FeeStrategy, config_builder

    config = config_builder().rpc_url("https://my-rpc.example.com").build()

    async with TxOptimizerClient(config) as client:
        # Recommend a fee from the last 150 slots
        estimate = await client.estimate_fee(FeeStrategy.FAST)
        print(f"Fee: {estimate.recommended_fee} microlamports/CU")

        # Submit a bundle and wait for it to land
        bundle = client.new_bundle().add_transaction(tx_bytes).build()
        result = await client.submit_and_confirm(bundle, timeout=30)
        print(result.to_dict())
"""

__version__ = "0.1.0"

# Client
from .client import TxOptimizerClient

# Configuration
from .config import (
    ConfigBuilder,
    OptimizerConfig,
    config_builder,
    config_from_env,
    config_from_file,
)

# Error types
from .errors import OptimizerError

# Engines
from .bundle import BundleBuilder, BundleSubmitter, ConfirmationPoller
from .priority_fee import (
    FeeSampler,
    PriorityFeeEstimator,
    apply_buffer,
    compute_estimate,
    percentile,
)
from .tips import JITO_TIP_ACCOUNTS, create_tip_instruction, random_tip_account

# Types
from .types import (
    Accepted,
    Bundle,
    BundleState,
    BundleStatus,
    BundleSubmissionResult,
    Expired,
    FeeEstimate,
    FeePercentiles,
    FeeSample,
    FeeStrategy,
    Landed,
    Rejected,
    SignatureStatus,
)

__all__ = [
    "__version__",
    # Client
    "TxOptimizerClient",
    # Config
    "ConfigBuilder",
    "OptimizerConfig",
    "config_builder",
    "config_from_env",
    "config_from_file",
    # Errors
    "OptimizerError",
    # Engines
    "BundleBuilder",
    "BundleSubmitter",
    "ConfirmationPoller",
    "FeeSampler",
    "PriorityFeeEstimator",
    "apply_buffer",
    "compute_estimate",
    "percentile",
    # Tips
    "JITO_TIP_ACCOUNTS",
    "create_tip_instruction",
    "random_tip_account",
    # Types
    "Accepted",
    "Bundle",
    "BundleState",
    "BundleStatus",
    "BundleSubmissionResult",
    "Expired",
    "FeeEstimate",
    "FeePercentiles",
    "FeeSample",
    "FeeStrategy",
    "Landed",
    "Rejected",
    "SignatureStatus",
]
