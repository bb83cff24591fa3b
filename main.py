import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI

import config
from chain.graph import GraphClient
from labels import MemoryLabelCache, SqlLabelCache
from link_routes import router as link_router
from pinning import pin_label
from pipeline import ClaimPipeline

logger = logging.getLogger(__name__)


def _label_cache():
    if not config.DATABASE_URL:
        return MemoryLabelCache()
    from db import ensure_schema, get_session_factory

    factory = get_session_factory()
    db = factory()
    try:
        ensure_schema(db)
    finally:
        db.close()
    return SqlLabelCache(factory)


def build_pipeline(network: config.Network) -> ClaimPipeline:
    settings = config.load_settings()
    graph = GraphClient.connect(
        network.rpc_url,
        network.multivault_address,
        config.BOT_PRIVATE_KEY,
        proxy_address=config.PROXY_ADDRESS,
        curve_id=settings.curve_id,
        atom_gas=settings.atom_gas,
        triple_gas=settings.triple_gas,
        receipt_timeout=settings.receipt_timeout,
    )
    return ClaimPipeline(
        graph,
        partial(pin_label, endpoint=network.graphql_endpoint),
        settings,
        labels=_label_cache(),
        explorer_tx_url=network.explorer_tx_url,
    )


@asynccontextmanager
async def lifespan(app):
    config.describe()
    network = config.get_network()
    app.state.network = network
    app.state.pipeline = build_pipeline(network)
    print(f"Claim pipeline ready (signer {app.state.pipeline.graph.signer.address})")
    yield
    print("Claim pipeline stopped")


app = FastAPI(title="Social Verifier API", version="0.1.0", lifespan=lifespan)
app.include_router(link_router)


@app.get("/healthz")
def healthz():
    return {"ok": "true"}
