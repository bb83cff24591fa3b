"""
Claim pipeline: OAuth token -> on-chain triple.

    [wallet] [has verified {platform} id] [user id]

Pattern per run: verify token -> resolve social label -> compute atom ids ->
check existence -> read costs -> create missing atoms one by one (each waits
for its receipt) -> pre-check the triple -> confirm endpoints are atoms and
the bot can pay -> create triple -> return outcome.

Runs share nothing but the signer; no step retries. Every failure comes back
as a LinkOutcome carrying which atoms this run created, so a caller retrying
does not pay for them twice.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, Field
from web3 import Web3

from config import PipelineSettings
from errors import (
    AlreadyLinkedError,
    EdgeCreationError,
    InputError,
    LedgerError,
    LinkError,
    NodeCreationError,
    VerificationError,
)
from labels import MemoryLabelCache
from oauth import Platform, VerificationResult, parse_platform, verify_token, verify_tokens

logger = logging.getLogger(__name__)

PREDICATE_TEMPLATE = "has verified {platform} id"
SOCIAL_DESCRIPTION_TEMPLATE = "Verified {platform} account ID"

# Lowercased revert fragments meaning "this term is already on chain"
_ATOM_EXISTS = ("atomexists", "atom exists", "already exists")
_TRIPLE_EXISTS = ("tripleexists", "triple exists", "already exists")

Verifier = Callable[..., Awaitable[VerificationResult]]
Pinner = Callable[[str, str], Awaitable[str]]


def predicate_name(platform) -> str:
    return PREDICATE_TEMPLATE.format(platform=parse_platform(platform).value)


def _reverted_exists(exc: Exception, markers) -> bool:
    msg = str(exc).lower()
    return any(m in msg for m in markers)


class LinkOutcome(BaseModel):
    success: bool
    platform: Optional[str] = None
    wallet_address: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    explorer_url: Optional[str] = None
    wallet_atom_created: bool = False
    predicate_atom_created: bool = False
    social_atom_created: bool = False
    already_linked: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None


class BatchOutcome(BaseModel):
    success: bool
    wallet_address: Optional[str] = None
    verified: Dict[str, bool] = Field(default_factory=dict)
    verified_count: int = 0
    threshold: int = 0
    results: Dict[str, LinkOutcome] = Field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class _Run:
    wallet: Optional[str] = None
    platform: Optional[Platform] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    already_linked: bool = False
    created: Dict[str, bool] = field(
        default_factory=lambda: {"wallet": False, "predicate": False, "social": False}
    )


class ClaimPipeline:
    def __init__(
        self,
        graph,
        pinner: Pinner,
        settings: Optional[PipelineSettings] = None,
        *,
        verifier: Optional[Verifier] = None,
        labels=None,
        explorer_tx_url: Optional[Callable[[str], str]] = None,
    ):
        self._graph = graph
        self._pin = pinner
        self._settings = settings or PipelineSettings()
        self._verify = verifier or verify_token
        self._labels = labels if labels is not None else MemoryLabelCache()
        self._explorer_tx_url = explorer_tx_url

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def graph(self):
        return self._graph

    # ────────────────────────────────────────────────────────────
    # Public entry points
    # ────────────────────────────────────────────────────────────

    async def link(self, wallet_address: str, platform: str, token: str) -> LinkOutcome:
        """Link one platform account to `wallet_address`. Never raises."""
        run = _Run()
        try:
            run.wallet = self._checked_wallet(wallet_address)
            run.platform = self._checked_platform(platform)
            if not token or not str(token).strip():
                raise InputError("Missing OAuth token")
            verification = await self._verify(
                run.platform.value, token, client_id=self._settings.twitch_client_id
            )
            await self._claim(run, verification)
        except AlreadyLinkedError:
            run.already_linked = True
        except LinkError as e:
            return self._failed(run, e)
        except Exception as e:
            logger.exception("Link run failed: wallet=%s platform=%s", run.wallet, run.platform)
            return self._failed(run, LedgerError(str(e) or type(e).__name__))
        return self._succeeded(run)

    async def link_all(self, wallet_address: str, tokens: Mapping[str, str]) -> BatchOutcome:
        """
        Verify every supplied token concurrently; when at least
        `verification_threshold` pass, link each verified platform in turn.
        Below the threshold nothing touches the ledger.
        """
        threshold = self._settings.verification_threshold
        try:
            wallet = self._checked_wallet(wallet_address)
            if not tokens:
                raise InputError("No OAuth tokens supplied")
            platforms = list(dict.fromkeys(self._checked_platform(name) for name in tokens))
        except InputError as e:
            return BatchOutcome(
                success=False,
                wallet_address=wallet_address,
                threshold=threshold,
                error=str(e),
                error_kind=e.kind,
            )

        token_for = {parse_platform(name).value: tok for name, tok in tokens.items()}
        checks = await verify_tokens(
            {p.value: token_for[p.value] for p in platforms},
            client_id=self._settings.twitch_client_id,
            verifier=self._verify,
        )
        verified = {name: bool(r.valid and r.user_id) for name, r in checks.items()}
        count = sum(verified.values())
        logger.info("Verified %d/%d platforms for %s: %s", count, len(platforms), wallet, verified)

        if count < threshold:
            return BatchOutcome(
                success=False,
                wallet_address=wallet,
                verified=verified,
                verified_count=count,
                threshold=threshold,
                error=(
                    f"Only {count}/{len(Platform)} platforms verified. "
                    f"At least {threshold} platforms must be connected."
                ),
                error_kind=VerificationError.__name__,
            )

        # sequential: every write is signed by the same account
        results: Dict[str, LinkOutcome] = {}
        for p in platforms:
            if not verified[p.value]:
                continue
            results[p.value] = await self._link_verified(wallet, p, checks[p.value])

        failed = [name for name, o in results.items() if not o.success]
        return BatchOutcome(
            success=not failed,
            wallet_address=wallet,
            verified=verified,
            verified_count=count,
            threshold=threshold,
            results=results,
            error=f"Linking failed for: {', '.join(failed)}" if failed else None,
        )

    async def is_linked(self, wallet_address: str, platform: str, user_id: str) -> bool:
        """True when this account's triple is on chain; needs a known label uri."""
        wallet = Web3.to_checksum_address(wallet_address)
        p = parse_platform(platform)
        uri = await asyncio.to_thread(self._labels.get, p.value, user_id)
        if uri is None:
            return False
        wallet_id, predicate_id, social_id = await asyncio.gather(
            self._graph.node_id(wallet.encode("utf-8")),
            self._graph.node_id(predicate_name(p).encode("utf-8")),
            self._graph.node_id(uri.encode("utf-8")),
        )
        triple_id = await self._graph.edge_id(wallet_id, predicate_id, social_id)
        return await self._graph.exists(triple_id)

    # ────────────────────────────────────────────────────────────
    # Steps
    # ────────────────────────────────────────────────────────────

    async def _link_verified(
        self, wallet: str, platform: Platform, verification: VerificationResult
    ) -> LinkOutcome:
        run = _Run(wallet=wallet, platform=platform)
        try:
            await self._claim(run, verification)
        except AlreadyLinkedError:
            run.already_linked = True
        except LinkError as e:
            return self._failed(run, e)
        except Exception as e:
            logger.exception("Link run failed: wallet=%s platform=%s", wallet, platform)
            return self._failed(run, LedgerError(str(e) or type(e).__name__))
        return self._succeeded(run)

    async def _claim(self, run: _Run, verification: VerificationResult):
        if not verification.valid or not verification.user_id:
            raise VerificationError(verification.error or "Invalid OAuth token")
        run.user_id = verification.user_id
        run.username = verification.username
        platform = run.platform.value
        logger.info("Verified %s account: %s (%s)", platform, run.username, run.user_id)

        social_uri = await self._resolve_label(platform, run.user_id)

        wallet_data = run.wallet.encode("utf-8")
        predicate_data = predicate_name(platform).encode("utf-8")
        social_data = social_uri.encode("utf-8")

        g = self._graph
        wallet_id, predicate_id, social_id = await asyncio.gather(
            g.node_id(wallet_data), g.node_id(predicate_data), g.node_id(social_data)
        )
        wallet_exists, predicate_exists, social_exists = await asyncio.gather(
            g.exists(wallet_id), g.exists(predicate_id), g.exists(social_id)
        )
        logger.info(
            "Atoms exist: wallet=%s predicate=%s social=%s",
            wallet_exists, predicate_exists, social_exists,
        )
        atom_cost, triple_cost = await asyncio.gather(g.node_cost(), g.edge_cost())

        atom_deposit = atom_cost + self._settings.atom_deposit
        if not wallet_exists:
            await self._create_atom(run, "wallet", wallet_data, wallet_id, atom_deposit)
        if not predicate_exists:
            await self._create_atom(run, "predicate", predicate_data, predicate_id, atom_deposit)
        if not social_exists:
            await self._create_atom(run, "social", social_data, social_id, atom_deposit)

        await self._create_triple(
            run, wallet_id, predicate_id, social_id, triple_cost + self._settings.triple_extra
        )

    async def _resolve_label(self, platform: str, user_id: str) -> str:
        uri = await asyncio.to_thread(self._labels.get, platform, user_id)
        if uri:
            logger.info("Reusing pinned label for %s:%s -> %s", platform, user_id, uri)
            return uri
        uri = await self._pin(user_id, SOCIAL_DESCRIPTION_TEMPLATE.format(platform=platform))
        await asyncio.to_thread(self._labels.put, platform, user_id, uri)
        # a concurrent run may have stored its uri first; use the stored one
        return await asyncio.to_thread(self._labels.get, platform, user_id) or uri

    async def _create_atom(self, run: _Run, role: str, data: bytes, term_id: bytes, deposit: int):
        logger.info("Creating %s atom (deposit=%d)", role, deposit)
        try:
            tx_hash = await self._graph.create_nodes([data], [deposit], receiver=run.wallet)
        except Exception as e:
            if _reverted_exists(e, _ATOM_EXISTS):
                logger.info("%s atom was created concurrently; continuing", role)
                return
            raise NodeCreationError(
                f"{role.capitalize()} atom creation failed: {e}", created=run.created
            ) from e

        confirmation = await self._graph.wait(tx_hash)
        if not confirmation.success:
            # another writer landing the same atom first reverts ours
            if await self._graph.exists(term_id):
                logger.info("%s atom landed from another writer (TX %s failed); continuing", role, tx_hash)
                return
            detail = " (unconfirmed, may still land)" if confirmation.pending else ""
            raise NodeCreationError(
                f"{role.capitalize()} atom creation failed. TX: {tx_hash}{detail}",
                tx_hash=tx_hash,
                created=run.created,
            )
        run.created[role] = True
        logger.info("%s atom created in block %s", role.capitalize(), confirmation.block_number)

    async def _create_triple(
        self, run: _Run, subject_id: bytes, predicate_id: bytes, object_id: bytes, deposit: int
    ):
        g = self._graph
        triple_id = await g.edge_id(subject_id, predicate_id, object_id)
        if await g.exists(triple_id):
            logger.info("Triple already exists: %s", Web3.to_hex(triple_id))
            raise AlreadyLinkedError("Triple already exists", created=run.created)

        endpoints = await asyncio.gather(
            g.exists(subject_id), g.exists(predicate_id), g.exists(object_id)
        )
        if not all(endpoints):
            wallet_ok, predicate_ok, social_ok = endpoints
            raise EdgeCreationError(
                f"Triple endpoints missing. wallet={wallet_ok} "
                f"predicate={predicate_ok} social={social_ok}",
                created=run.created,
            )

        atoms = await asyncio.gather(
            g.is_atom(subject_id), g.is_atom(predicate_id), g.is_atom(object_id)
        )
        if not all(atoms):
            wallet_ok, predicate_ok, social_ok = atoms
            raise EdgeCreationError(
                f"Triple endpoints are not all atoms. wallet={wallet_ok} "
                f"predicate={predicate_ok} social={social_ok}",
                created=run.created,
            )

        balance = await g.signer.balance()
        if balance < deposit:
            raise EdgeCreationError(
                f"Insufficient bot balance. Need {deposit}, have {balance}",
                created=run.created,
            )

        logger.info(
            "Creating triple: [%s] [%s] [%s] (deposit=%d)",
            run.wallet, predicate_name(run.platform), run.user_id, deposit,
        )
        try:
            tx_hash = await g.create_edges(
                [subject_id], [predicate_id], [object_id], [deposit], receiver=run.wallet
            )
        except Exception as e:
            if _reverted_exists(e, _TRIPLE_EXISTS):
                raise AlreadyLinkedError(str(e), created=run.created) from e
            raise EdgeCreationError(
                f"Triple creation failed: {e}", created=run.created
            ) from e

        confirmation = await g.wait(tx_hash)
        if not confirmation.success:
            if await g.exists(triple_id):
                logger.info("Triple landed from another writer (TX %s failed)", tx_hash)
                raise AlreadyLinkedError("Triple already exists", created=run.created)
            detail = " (unconfirmed, may still land)" if confirmation.pending else ""
            raise EdgeCreationError(
                f"Triple creation failed. TX: {tx_hash}{detail}",
                tx_hash=tx_hash,
                created=run.created,
            )
        run.tx_hash = tx_hash
        run.block_number = confirmation.block_number
        logger.info("Triple created in block %s", confirmation.block_number)

    # ────────────────────────────────────────────────────────────
    # Helpers
    # ────────────────────────────────────────────────────────────

    def _checked_wallet(self, wallet_address) -> str:
        if not wallet_address or not str(wallet_address).strip():
            raise InputError("Missing wallet address")
        value = str(wallet_address).strip()
        if not Web3.is_address(value):
            raise InputError(f"Invalid wallet address: {value}")
        return Web3.to_checksum_address(value)

    def _checked_platform(self, platform) -> Platform:
        if not platform:
            raise InputError("Missing platform")
        try:
            return parse_platform(platform)
        except ValueError as e:
            raise InputError(str(e)) from None

    def _base(self, run: _Run) -> dict:
        return {
            "platform": run.platform.value if run.platform else None,
            "wallet_address": run.wallet,
            "user_id": run.user_id,
            "username": run.username,
            "wallet_atom_created": run.created["wallet"],
            "predicate_atom_created": run.created["predicate"],
            "social_atom_created": run.created["social"],
        }

    def _succeeded(self, run: _Run) -> LinkOutcome:
        explorer = None
        if run.tx_hash and self._explorer_tx_url:
            explorer = self._explorer_tx_url(run.tx_hash)
        return LinkOutcome(
            success=True,
            tx_hash=run.tx_hash,
            block_number=run.block_number,
            explorer_url=explorer,
            already_linked=run.already_linked,
            **self._base(run),
        )

    def _failed(self, run: _Run, e: LinkError) -> LinkOutcome:
        logger.warning("Link failed (%s): %s", e.kind, e)
        tx_hash = e.tx_hash or run.tx_hash
        explorer = self._explorer_tx_url(tx_hash) if tx_hash and self._explorer_tx_url else None
        return LinkOutcome(
            success=False,
            tx_hash=tx_hash,
            explorer_url=explorer,
            error=str(e),
            error_kind=e.kind,
            **self._base(run),
        )
