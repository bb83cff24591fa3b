from unittest.mock import patch

import pytest

import config


def test_known_networks():
    assert config.get_network("testnet").chain_id == 13579
    assert config.get_network("MAINNET").chain_id == 1155
    assert config.NETWORKS["mainnet"].multivault_address == "0x6E35cF57A41fA15eA0EaE9C33e751b01A784Fe7e"


def test_unknown_network():
    with pytest.raises(ValueError):
        config.get_network("ropsten")


def test_endpoint_overrides():
    with patch.object(config, "RPC_URL", "http://localhost:8545"), \
         patch.object(config, "GRAPHQL_ENDPOINT", ""):
        net = config.get_network("testnet")
    assert net.rpc_url == "http://localhost:8545"
    assert net.graphql_endpoint == config.NETWORKS["testnet"].graphql_endpoint
    assert net.multivault_address == config.NETWORKS["testnet"].multivault_address


def test_explorer_urls():
    net = config.NETWORKS["testnet"]
    assert net.explorer_tx_url("0xabc") == "https://testnet.explorer.intuition.systems/tx/0xabc"
    assert net.explorer_address_url("0x1").endswith("/address/0x1")


def test_default_settings():
    s = config.PipelineSettings()
    assert s.atom_deposit == 5 * 10**17
    assert s.triple_extra == 5 * 10**17
    assert (s.atom_gas, s.triple_gas) == (500_000, 800_000)
    assert s.verification_threshold == 5


def test_load_settings_reads_env_constants():
    with patch.object(config, "TWITCH_CLIENT_ID", ""), \
         patch.object(config, "VERIFICATION_THRESHOLD", 3):
        s = config.load_settings()
    assert s.twitch_client_id is None
    assert s.verification_threshold == 3
