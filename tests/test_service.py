import pytest

from multichain_wallet.config import WalletEngineConfig
from multichain_wallet.core.conversation import ConversationStep
from multichain_wallet.core.service import WalletService
from multichain_wallet.storage.database import Database
from multichain_wallet.wallet.engine import AbortReason, TransferState
from multichain_wallet.wallet.errors import (
    AlreadyExistsError,
    DuplicateTokenError,
    InvalidInputError,
    UnknownChainError,
    WalletNotFoundError,
)

from conftest import ETHER, RECIPIENT, TOKEN_A


async def drain(stream):
    return [event async for event in stream]


# ---------------------------------------------------------------------------
# Wallet and reports
# ---------------------------------------------------------------------------


async def test_report_without_wallet(service):
    with pytest.raises(WalletNotFoundError):
        await service.get_report("alice")


async def test_create_then_report(service):
    created = await service.create_wallet(42)

    assert created.user_id == "42"
    assert created.chain.chain_id == 1
    assert created.chain.current
    assert len(created.mnemonic.get_secret_value().split()) == 12

    report = await service.get_report(42)
    assert report.address == created.address
    assert report.native == "0.000000 ETH"
    assert report.tokens == []


async def test_second_create_rejected(service):
    await service.create_wallet("alice")
    with pytest.raises(AlreadyExistsError):
        await service.create_wallet("alice")
    assert service.has_wallet("alice")
    assert not service.has_wallet("bob")


async def test_switch_changes_report_symbol(service):
    await service.create_wallet("alice")

    info = await service.switch_chain("alice", 137)
    report = await service.get_report("alice")

    assert info.native_symbol == "POL"
    assert report.chain_id == 137
    assert report.native.endswith(" POL")


async def test_switch_to_unknown_chain(service):
    await service.create_wallet("alice")
    with pytest.raises(UnknownChainError):
        await service.switch_chain("alice", 999)
    assert service.current_chain("alice").chain_id == 1


async def test_list_chains_marks_current(service):
    await service.create_wallet("alice")
    await service.switch_chain("alice", 56)

    chains = service.list_chains("alice")

    assert len(chains) == 10
    assert [c.chain_id for c in chains if c.current] == [56]
    assert not any(c.current for c in service.list_chains())


async def test_receive_info(service):
    created = await service.create_wallet("alice")
    await service.switch_chain("alice", 137)

    info = service.receive_info("alice")

    assert info.address == created.address
    assert info.explorer_address_url == f"https://polygonscan.com/address/{created.address}"


async def test_receive_info_without_wallet(service):
    with pytest.raises(WalletNotFoundError):
        service.receive_info("ghost")


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


async def test_tokens_are_scoped_to_current_chain(service, clients):
    await service.create_wallet("alice")
    (await service.pool.client_for(1)).add_token(TOKEN_A, "Alpha", "ALP", 18)

    await service.register_token("alice", TOKEN_A)
    assert [t.symbol for t in service.list_tokens("alice").tokens] == ["ALP"]

    await service.switch_chain("alice", 137)
    listing = service.list_tokens("alice")
    assert listing.chain.chain_id == 137
    assert listing.tokens == []


async def test_registered_token_shows_in_report(service):
    created = await service.create_wallet("alice")
    client = await service.pool.client_for(1)
    client.add_token(TOKEN_A, "Alpha", "ALP", 18, {created.address: 3 * ETHER})

    await service.register_token("alice", TOKEN_A)
    report = await service.get_report("alice")

    assert [t.formatted for t in report.tokens] == ["3.000000 ALP"]


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


async def test_send_transfer_on_current_chain(service):
    created = await service.create_wallet("alice")
    await service.switch_chain("alice", 10)
    client = await service.pool.client_for(10)
    client.native_balances[created.address] = ETHER

    events = await drain(service.send_transfer("alice", RECIPIENT, "0.1"))

    assert events[-1].state is TransferState.CONFIRMED
    assert len(client.broadcasts) == 1


async def test_send_more_than_balance(service):
    await service.create_wallet("alice")
    events = await drain(service.send_transfer("alice", RECIPIENT, "1"))

    outcome = events[-1].outcome
    assert outcome.reason is AbortReason.INSUFFICIENT_FUNDS
    assert outcome.tx_hash is None


# ---------------------------------------------------------------------------
# Multi-turn input
# ---------------------------------------------------------------------------


async def test_input_without_pending_step(service):
    await service.create_wallet("alice")
    with pytest.raises(InvalidInputError):
        await service.handle_input("alice", TOKEN_A)


async def test_add_token_flow(service):
    await service.create_wallet("alice")
    (await service.pool.client_for(1)).add_token(TOKEN_A, "Alpha", "ALP", 18)

    service.begin_add_token("alice")
    assert service.conversations.current("alice") is ConversationStep.AWAITING_TOKEN_ADDRESS

    result = await service.handle_input("alice", f"  {TOKEN_A}\n")

    assert result.step is ConversationStep.AWAITING_TOKEN_ADDRESS
    assert result.token.symbol == "ALP"
    assert service.conversations.current("alice") is ConversationStep.IDLE


async def test_add_token_flow_uses_chain_of_prompt(service):
    await service.create_wallet("alice")
    (await service.pool.client_for(1)).add_token(TOKEN_A, "Alpha", "ALP", 18)

    service.begin_add_token("alice")
    await service.switch_chain("alice", 137)
    result = await service.handle_input("alice", TOKEN_A)

    assert result.token.chain_id == 1


async def test_failed_token_input_clears_pending_step(service):
    await service.create_wallet("alice")
    (await service.pool.client_for(1)).add_token(TOKEN_A, "Alpha", "ALP", 18)
    await service.register_token("alice", TOKEN_A)

    service.begin_add_token("alice")
    with pytest.raises(DuplicateTokenError):
        await service.handle_input("alice", TOKEN_A)

    assert service.conversations.current("alice") is ConversationStep.IDLE


async def test_send_flow(service):
    created = await service.create_wallet("alice")
    client = await service.pool.client_for(1)
    client.native_balances[created.address] = ETHER

    service.begin_send("alice")
    result = await service.handle_input("alice", f"{RECIPIENT}   0.5")
    events = await drain(result.transfer)

    assert result.step is ConversationStep.AWAITING_SEND_DETAILS
    assert events[-1].state is TransferState.CONFIRMED
    assert client.broadcasts[0]["value"] == ETHER // 2


@pytest.mark.parametrize("text", [RECIPIENT, f"{RECIPIENT} 0.1 extra", ""])
async def test_malformed_send_details_clear_state(service, text):
    await service.create_wallet("alice")
    service.begin_send("alice")

    with pytest.raises(InvalidInputError):
        await service.handle_input("alice", text)

    assert service.conversations.current("alice") is ConversationStep.IDLE


async def test_begin_send_requires_wallet(service):
    with pytest.raises(WalletNotFoundError):
        service.begin_send("ghost")
    assert service.conversations.current("ghost") is ConversationStep.IDLE


async def test_expired_prompt_is_ignored(service):
    await service.create_wallet("alice")
    service.conversations.timeout = 0
    service.begin_send("alice")

    with pytest.raises(InvalidInputError):
        await service.handle_input("alice", f"{RECIPIENT} 0.1")


async def test_users_do_not_share_pending_steps(service):
    await service.create_wallet("alice")
    await service.create_wallet("bob")
    service.begin_send("alice")

    with pytest.raises(InvalidInputError):
        await service.handle_input("bob", f"{RECIPIENT} 0.1")
    assert service.conversations.current("alice") is ConversationStep.AWAITING_SEND_DETAILS


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def test_state_survives_restart(tmp_path, factories):
    config = WalletEngineConfig()
    db = Database(tmp_path / "w.db")
    await db.connect()
    first = WalletService(config, db, factories)
    await first.start()
    created = await first.create_wallet("alice")
    await first.switch_chain("alice", 250)
    await first.shutdown()

    db = Database(tmp_path / "w.db")
    await db.connect()
    second = WalletService(config, db, factories)
    await second.start()
    try:
        assert second.receive_info("alice").address == created.address
        assert second.current_chain("alice").native_symbol == "FTM"
    finally:
        await second.shutdown()


async def test_open_uses_data_dir(tmp_path):
    service = await WalletService.open(tmp_path)
    try:
        assert (tmp_path / ".multichain-wallet" / "wallet.db").exists()
        assert service.registry.home_chain_id == 1
    finally:
        await service.shutdown()


async def test_send_flow_runs_on_chain_of_prompt(service):
    created = await service.create_wallet("alice")
    ethereum = await service.pool.client_for(1)
    ethereum.native_balances[created.address] = ETHER

    service.begin_send("alice")
    await service.switch_chain("alice", 137)
    result = await service.handle_input("alice", f"{RECIPIENT} 0.1")
    events = await drain(result.transfer)

    assert result.chain_id == 1
    assert events[-1].state is TransferState.CONFIRMED
    assert len(ethereum.broadcasts) == 1
