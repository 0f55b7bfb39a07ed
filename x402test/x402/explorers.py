# x402test/x402/explorers.py
"""Block explorer links for Solana transactions."""
import logging
from typing import Literal

logger = logging.getLogger(__name__)

Explorer = Literal["solana-explorer", "solscan"]
Cluster = Literal["devnet", "mainnet-beta", "localnet"]

LOCALNET_RPC_URL = "http://localhost:8899"


def cluster_from_network(network: str) -> Cluster:
    """
    Map an x402 network identifier to a Solana cluster.

    "solana-devnet" -> "devnet", "solana" / "solana-mainnet" -> "mainnet-beta".
    Unknown networks are treated as a local validator.
    """
    name = network.lower()
    if name.startswith("solana-"):
        name = name[len("solana-"):]

    if name == "devnet":
        return "devnet"
    if name in ("solana", "mainnet", "mainnet-beta"):
        return "mainnet-beta"
    if name not in ("localnet", "localhost"):
        logger.warning(f"Unknown network '{network}', using localnet explorer links")
    return "localnet"


def _cluster_param(cluster: Cluster) -> str:
    if cluster == "mainnet-beta":
        return ""
    if cluster == "devnet":
        return "?cluster=devnet"
    if cluster == "localnet":
        return f"?cluster=custom&customUrl={LOCALNET_RPC_URL}"
    raise ValueError(f"Invalid cluster: {cluster}")


def get_explorer_url(signature: str, explorer: Explorer, cluster: Cluster) -> str:
    """Build the explorer URL of a transaction."""
    cluster_param = _cluster_param(cluster)

    if explorer == "solana-explorer":
        return f"https://explorer.solana.com/tx/{signature}{cluster_param}"
    if explorer == "solscan":
        return f"https://solscan.io/tx/{signature}{cluster_param}"
    raise ValueError(f"Invalid explorer: {explorer}")


def log_explorer_link(signature: str, explorer: Explorer, cluster: Cluster) -> str:
    """Log and return the explorer link of a transaction."""
    url = get_explorer_url(signature, explorer, cluster)
    logger.info(f"signature: {signature}")
    logger.info(f"Explorer link: {url}")
    return url
