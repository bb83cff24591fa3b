from dotenv import load_dotenv
from dataclasses import dataclass
from typing import Optional
import os

load_dotenv()

# ------------------------------------------------------------
# Networks
# ------------------------------------------------------------

@dataclass(frozen=True)
class Network:
    name: str
    chain_id: int
    rpc_url: str
    multivault_address: str
    graphql_endpoint: str
    explorer_url: str

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    def explorer_address_url(self, address: str) -> str:
        return f"{self.explorer_url}/address/{address}"


NETWORKS = {
    "testnet": Network(
        name="testnet",
        chain_id=13579,
        rpc_url="https://testnet.rpc.intuition.systems",
        multivault_address="0x2Ece8D4dEdcB9918A398528f3fa4688b1d2CAB91",
        graphql_endpoint="https://testnet.intuition.sh/v1/graphql",
        explorer_url="https://testnet.explorer.intuition.systems",
    ),
    "mainnet": Network(
        name="mainnet",
        chain_id=1155,
        rpc_url="https://rpc.intuition.systems",
        multivault_address="0x6E35cF57A41fA15eA0EaE9C33e751b01A784Fe7e",
        graphql_endpoint="https://mainnet.intuition.sh/v1/graphql",
        explorer_url="https://explorer.intuition.systems",
    ),
}

NETWORK = os.getenv("NETWORK", "mainnet").strip().lower()

# Optional overrides of the selected network's endpoints
RPC_URL = os.getenv("RPC_URL", "")
GRAPHQL_ENDPOINT = os.getenv("GRAPHQL_ENDPOINT", "")

# ------------------------------------------------------------
# Signing / write route
# ------------------------------------------------------------
BOT_PRIVATE_KEY = os.getenv("BOT_PRIVATE_KEY", "")  # Required for signing txs

# Writes go through the fee proxy when set, straight to MultiVault otherwise
PROXY_ADDRESS = os.getenv("PROXY_ADDRESS", "")
CURVE_ID = int(os.getenv("CURVE_ID", "1"))

# ------------------------------------------------------------
# Deposits / gas (wei)
# ------------------------------------------------------------
ATOM_DEPOSIT_WEI = int(os.getenv("ATOM_DEPOSIT_WEI", str(5 * 10**17)))   # 0.5 TRUST
TRIPLE_EXTRA_WEI = int(os.getenv("TRIPLE_EXTRA_WEI", str(5 * 10**17)))   # 0.5 TRUST

ATOM_GAS_LIMIT = int(os.getenv("ATOM_GAS_LIMIT", "500000"))
TRIPLE_GAS_LIMIT = int(os.getenv("TRIPLE_GAS_LIMIT", "800000"))

RECEIPT_TIMEOUT = int(os.getenv("RECEIPT_TIMEOUT", "120"))  # seconds

# ------------------------------------------------------------
# OAuth
# ------------------------------------------------------------
TWITCH_CLIENT_ID = os.getenv("TWITCH_CLIENT_ID", "")

# Platforms that must verify when several are linked in one request
VERIFICATION_THRESHOLD = int(os.getenv("VERIFICATION_THRESHOLD", "5"))

# ------------------------------------------------------------
# Optional persistence (label cache + link records)
# ------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")


@dataclass(frozen=True)
class PipelineSettings:
    """Deposit, gas and verification knobs handed to the claim pipeline."""

    atom_deposit: int = 5 * 10**17
    triple_extra: int = 5 * 10**17
    atom_gas: int = 500_000
    triple_gas: int = 800_000
    receipt_timeout: int = 120
    verification_threshold: int = 5
    twitch_client_id: Optional[str] = None
    curve_id: int = 1


def get_network(name: Optional[str] = None) -> Network:
    """Resolve a network by name, applying RPC/GraphQL env overrides."""
    key = (name or NETWORK).strip().lower()
    if key not in NETWORKS:
        raise ValueError(f"Unknown network {key!r}; expected one of {sorted(NETWORKS)}")
    net = NETWORKS[key]
    if RPC_URL or GRAPHQL_ENDPOINT:
        net = Network(
            name=net.name,
            chain_id=net.chain_id,
            rpc_url=RPC_URL or net.rpc_url,
            multivault_address=net.multivault_address,
            graphql_endpoint=GRAPHQL_ENDPOINT or net.graphql_endpoint,
            explorer_url=net.explorer_url,
        )
    return net


def load_settings() -> PipelineSettings:
    return PipelineSettings(
        atom_deposit=ATOM_DEPOSIT_WEI,
        triple_extra=TRIPLE_EXTRA_WEI,
        atom_gas=ATOM_GAS_LIMIT,
        triple_gas=TRIPLE_GAS_LIMIT,
        receipt_timeout=RECEIPT_TIMEOUT,
        verification_threshold=VERIFICATION_THRESHOLD,
        twitch_client_id=TWITCH_CLIENT_ID or None,
        curve_id=CURVE_ID,
    )


def describe():
    net = get_network()
    print("Config loaded:")
    print("  NETWORK:", net.name, f"(chain {net.chain_id})")
    print("  MULTIVAULT:", net.multivault_address)
    print("  RPC_URL:", net.rpc_url[:48] + ("…" if len(net.rpc_url) > 48 else ""))
    print("  WRITE ROUTE:", "proxy " + PROXY_ADDRESS if PROXY_ADDRESS else "direct")
    print("  BOT_PRIVATE_KEY:", "<set>" if BOT_PRIVATE_KEY else "<missing>")
    print("  TWITCH_CLIENT_ID:", "<set>" if TWITCH_CLIENT_ID else "<missing>")
    print("  DATABASE_URL:", "<set>" if DATABASE_URL else "<none>")
