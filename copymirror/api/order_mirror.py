"""
Order Mirror
============
Submits mirrored orders on Polymarket's CLOB on behalf of the local wallet.

Routes:
- dry-run:  nothing leaves the process, a descriptive token is returned
- primary:  py-clob-client, API credentials derived on first use
- fallback: raw POST to the orders endpoint when the CLOB client could
            not be constructed
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

import aiohttp
from eth_account import Account
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds, OrderArgs, OrderType
from py_clob_client.order_builder.constants import BUY, SELL
from web3 import Web3

from copymirror.config import CopySettings, get_settings

logger = logging.getLogger(__name__)

# Polygon Mainnet
CHAIN_ID = 137
# Polymarket CTF Exchange contract on Polygon
CTF_EXCHANGE = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982e"
# Polymarket Neg Risk CTF Exchange
NEG_RISK_CTF_EXCHANGE = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
# USDC on Polygon
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"

MAX_UINT256 = 2**256 - 1
MIN_PRICE = 0.01
MAX_PRICE = 0.99
FALLBACK_TIMEOUT_S = 15

USDC_ABI = [
    {"constant": False,
     "inputs": [{"name": "_spender", "type": "address"}, {"name": "_value", "type": "uint256"}],
     "name": "approve", "outputs": [{"name": "", "type": "bool"}],
     "type": "function"},
    {"constant": True,
     "inputs": [{"name": "_owner", "type": "address"}, {"name": "_spender", "type": "address"}],
     "name": "allowance", "outputs": [{"name": "remaining", "type": "uint256"}],
     "type": "function"},
]


class Side(Enum):
    """Trade side enumeration."""
    BUY = "buy"
    SELL = "sell"


class ExecutionError(Exception):
    """A mirrored order could not be submitted."""


@dataclass(frozen=True)
class MirrorOrderRequest:
    """The order placed on behalf of the local wallet for one fill."""
    market_id: str
    outcome_id: str
    side: Side
    price: float
    size: float
    outcome_index: Optional[int] = None


@dataclass
class OrderResult:
    """Confirmation of a submitted (or simulated) order."""
    token: str
    route: str  # "dry-run", "primary" or "fallback"

    @property
    def simulated(self) -> bool:
        return self.route == "dry-run"


def _fmt(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def dry_run_token(request: MirrorOrderRequest, slippage: float) -> str:
    """Deterministic description of an order that was not sent."""
    return (
        f"dry-run:{request.market_id}:{request.outcome_id}:{request.side.value}:"
        f"{_fmt(request.size)}@{_fmt(request.price)}~slip:{_fmt(slippage)}"
    )


def limit_price(price: float, side: Side, slippage: float) -> float:
    """Worst acceptable price for a mirrored order."""
    if side == Side.BUY:
        bounded = price * (1 + slippage)
    else:
        bounded = price * (1 - slippage)
    return round(max(MIN_PRICE, min(MAX_PRICE, bounded)), 2)


def load_account(private_key: str):
    """Resolve the signing credential into a local account."""
    pk = (private_key or "").strip()
    if not pk:
        raise ValueError("No private key configured")
    if not pk.startswith("0x"):
        pk = "0x" + pk
    return Account.from_key(pk)


class OrderMirror:
    """
    Stateless executor of mirrored orders.

    The only session state is the CLOB client (with the API credentials
    attached to it) and the approvals flag, both created lazily.
    """

    def __init__(
        self,
        settings: Optional[CopySettings] = None,
        account=None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or get_settings()
        self.dry_run = self.settings.dry_run
        self.slippage = self.settings.slippage
        self.clob_base_url = self.settings.clob_api_url.rstrip("/")
        self._account = account
        self._session = session
        self._owns_session = session is None
        self._web3: Optional[Web3] = None
        self.clob_client: Optional[ClobClient] = None
        self._creds_ready = False
        self._approvals_ready = False
        self._is_initialized = False

    async def initialize(self) -> bool:
        """Build the venue clients. Never contacts the venue in dry-run."""
        if self._is_initialized:
            return True

        if self._account is None:
            self._account = load_account(self.settings.private_key)
        logger.info(f"👛 Wallet: {self._account.address}")

        if self.dry_run:
            logger.info("🧪 Dry-run: orders will be simulated")
            self._is_initialized = True
            return True

        self._web3 = Web3(Web3.HTTPProvider(self.settings.rpc_url, request_kwargs={"timeout": 20}))
        self.clob_client = self._build_clob_client()
        if self.clob_client is None:
            logger.warning("⚠️ CLOB client unavailable, orders will use the raw transport")

        self._is_initialized = True
        return True

    def _build_clob_client(self) -> Optional[ClobClient]:
        signature_type = 0 if self.settings.wallet_type == "metamask" else 1
        funder = self.settings.funder_address or self._account.address
        creds = None
        if self.settings.api_key and self.settings.api_secret and self.settings.api_passphrase:
            creds = ApiCreds(
                api_key=self.settings.api_key,
                api_secret=self.settings.api_secret,
                api_passphrase=self.settings.api_passphrase
            )
        try:
            client = ClobClient(
                host=self.clob_base_url,
                key=self._account.key.hex(),
                chain_id=CHAIN_ID,
                creds=creds,
                signature_type=signature_type,
                funder=funder
            )
        except Exception as e:
            logger.error(f"❌ Failed to build CLOB client: {e}")
            return None
        self._creds_ready = creds is not None
        return client

    async def close(self):
        """Close the fallback transport session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if not self._session:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=FALLBACK_TIMEOUT_S)
            )
            self._owns_session = True
        return self._session

    @property
    def wallet_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    # ─── Preconditions ──────────────────────────────────────────────────────
    async def ensure_approvals(self):
        """
        Make sure the exchanges may spend the wallet's USDC.

        Skipped in dry-run and for proxy wallets, whose approvals are
        managed by Polymarket.
        """
        if self.dry_run or self._approvals_ready:
            return
        if self.settings.wallet_type != "metamask" or not self._web3:
            self._approvals_ready = True
            return
        await asyncio.to_thread(self._approve_exchanges)
        self._approvals_ready = True

    def _approve_exchanges(self):
        w3 = self._web3
        wallet = Web3.to_checksum_address(self._account.address)
        usdc = w3.eth.contract(address=Web3.to_checksum_address(USDC_ADDRESS), abi=USDC_ABI)

        exchanges = [
            ("CTF Exchange", CTF_EXCHANGE),
            ("Neg Risk Exchange", NEG_RISK_CTF_EXCHANGE),
        ]
        for name, addr in exchanges:
            spender = Web3.to_checksum_address(addr)
            allowance = usdc.functions.allowance(wallet, spender).call()
            if allowance / 1e6 > 1_000_000:
                continue

            logger.info(f"🔐 Approving USDC for {name}...")
            tx = usdc.functions.approve(spender, MAX_UINT256).build_transaction({
                'from': wallet,
                'nonce': w3.eth.get_transaction_count(wallet),
                'gasPrice': w3.eth.gas_price,
                'gas': 60000,
                'chainId': CHAIN_ID
            })
            signed_tx = w3.eth.account.sign_transaction(tx, self._account.key)
            tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=60)
            if receipt['status'] != 1:
                raise ExecutionError(f"USDC approval for {name} failed: {tx_hash.hex()}")
            logger.info(f"✅ {name} approved! TX: {tx_hash.hex()}")

    # ─── Submission ─────────────────────────────────────────────────────────
    async def submit(self, request: MirrorOrderRequest) -> OrderResult:
        """
        Submit one mirrored order.

        Raises:
            ExecutionError: wrapping the underlying failure. No retry is
                attempted here.
        """
        if self.dry_run:
            return OrderResult(token=dry_run_token(request, self.slippage), route="dry-run")

        try:
            if not self._is_initialized:
                await self.initialize()
            if self.clob_client is None:
                token = await self._submit_raw(request)
                return OrderResult(token=token, route="fallback")
            token = await asyncio.to_thread(self._submit_clob, request)
            return OrderResult(token=token, route="primary")
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"Order failed: {e}") from e

    def _ensure_api_creds(self):
        if self._creds_ready:
            return
        creds = self.clob_client.create_or_derive_api_creds()
        self.clob_client.set_api_creds(creds)
        self._creds_ready = True
        logger.info("✅ API credentials derived and attached")

    def _submit_clob(self, request: MirrorOrderRequest) -> str:
        self._ensure_api_creds()

        price = limit_price(request.price, request.side, self.slippage)
        logger.info(f"📤 Placing {request.side.value.upper()} order: {request.size} @ {price}")

        order_args = OrderArgs(
            token_id=request.outcome_id,
            price=price,
            size=request.size,
            side=BUY if request.side == Side.BUY else SELL,
            fee_rate_bps=0
        )
        signed_order = self.clob_client.create_order(order_args)
        response = self.clob_client.post_order(signed_order, OrderType.GTC) or {}

        if response.get("success") is False:
            raise ExecutionError(f"Order failed: {response.get('errorMsg') or 'Unknown error'}")
        return response.get("orderID") or response.get("orderId") or response.get("hash") or "submitted"

    async def _submit_raw(self, request: MirrorOrderRequest) -> str:
        payload = {
            "marketId": request.market_id,
            "outcomeId": request.outcome_id,
            "side": request.side.value,
            "price": request.price,
            "size": request.size,
            "slippage": self.slippage,
        }
        headers = {"Content-Type": "application/json"}
        if self.settings.clob_api_key:
            headers["x-api-key"] = self.settings.clob_api_key

        logger.info(f"📤 Raw transport {request.side.value.upper()} order: {request.size} @ {request.price}")
        async with self.session.post(f"{self.clob_base_url}/orders", json=payload, headers=headers) as response:
            if response.status >= 400:
                body = await response.text()
                raise ExecutionError(f"Order failed: HTTP {response.status} {body[:200]}")
            data: Dict[str, Any] = await response.json(content_type=None) or {}

        if not isinstance(data, dict):
            return "submitted"
        return data.get("hash") or data.get("transactionHash") or "submitted"
