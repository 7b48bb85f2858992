import httpx
import pytest
from sqlalchemy import func, select

from models.agent import Agent
from models.credit_transaction import CreditTransaction
from models.unified_user import UnifiedUser
from models.user import User
from services import credits
from services.credits import CreditTransactionType

from conftest import portal_client


async def _seed_user(session_maker, **fields) -> str:
    values = {"id": "u1", "external_id": "ext-1", "email": "agent@example.com", "credit_balance": 0}
    values.update(fields)
    async with session_maker() as session:
        session.add(User(**values))
        await session.commit()
    return values["id"]


async def _local_balance(session_maker, user_id: str) -> int:
    async with session_maker() as session:
        return await session.scalar(select(User.credit_balance).where(User.id == user_id))


async def _transactions(session_maker, user_id: str):
    async with session_maker() as session:
        result = await session.execute(select(CreditTransaction).where(CreditTransaction.user_id == user_id))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_get_or_create_user_returns_same_user_twice(session_maker):
    async with session_maker() as session:
        first = await credits.get_or_create_user("ext-1", session, email="agent@example.com")
    async with session_maker() as session:
        second = await credits.get_or_create_user("ext-1", session, email="agent@example.com")
        count = await session.scalar(select(func.count()).select_from(User))

    assert first.id == second.id
    assert count == 1
    assert first.credit_balance == 0


@pytest.mark.asyncio
async def test_unclaimed_record_adopted_only_for_verified_email(session_maker):
    await _seed_user(session_maker, id="legacy", external_id=None, credit_balance=300)

    async with session_maker() as session:
        unverified = await credits.get_or_create_user("ext-new", session, email="agent@example.com")
    assert unverified.id != "legacy"

    async with session_maker() as session:
        verified = await credits.get_or_create_user(
            "ext-other", session, email="agent@example.com", email_verified=True
        )
    assert verified.id == "legacy"
    assert verified.external_id == "ext-other"
    assert verified.credit_balance == 300


@pytest.mark.asyncio
async def test_spend_with_zero_balance_is_insufficient(session_maker):
    user_id = await _seed_user(session_maker)

    async with session_maker() as session:
        result = await credits.spend_credits(
            user_id, session, amount=75, transaction_type=CreditTransactionType.CAROUSEL, description="test"
        )

    assert (result.success, result.new_balance, result.error) == (False, 0, "Insufficient credits")
    assert await _transactions(session_maker, user_id) == []


@pytest.mark.asyncio
async def test_spend_then_balance_reports_lifetime_spent(session_maker):
    user_id = await _seed_user(session_maker, credit_balance=100, lifetime_credits=100)

    async with session_maker() as session:
        result = await credits.spend_credits(
            user_id, session, amount=75, transaction_type=CreditTransactionType.CAROUSEL, description="test"
        )
    async with session_maker() as session:
        balance = await credits.get_balance(user_id, session)

    assert (result.success, result.new_balance) == (True, 25)
    assert (balance.balance, balance.lifetime_spent, balance.lifetime_earned) == (25, 75, 100)
    [entry] = await _transactions(session_maker, user_id)
    assert entry.amount == -75
    assert entry.type == "storywork_carousel"
    assert entry.source == "storywork_credits"


@pytest.mark.asyncio
async def test_overdraw_leaves_balance_unchanged(session_maker):
    user_id = await _seed_user(session_maker, credit_balance=74)

    async with session_maker() as session:
        result = await credits.spend_credits(
            user_id, session, amount=75, transaction_type=CreditTransactionType.CAROUSEL, description="test"
        )

    assert (result.success, result.new_balance) == (False, 74)
    assert await _local_balance(session_maker, user_id) == 74


@pytest.mark.asyncio
async def test_balance_matches_local_and_subscription_ledger(session_maker):
    user_id = await _seed_user(session_maker)
    steps = [("grant", 300), ("spend", 75), ("spend", 75), ("grant", 150), ("spend", 500), ("spend", 75)]

    for kind, amount in steps:
        async with session_maker() as session:
            if kind == "grant":
                await credits.add_credits(
                    user_id,
                    session,
                    amount=amount,
                    transaction_type=CreditTransactionType.SUBSCRIPTION_MONTHLY,
                    description="grant",
                )
            else:
                await credits.spend_credits(
                    user_id, session, amount=amount, transaction_type=CreditTransactionType.CAROUSEL, description="spend"
                )

    entries = await _transactions(session_maker, user_id)
    ledger_total = sum(e.amount for e in entries if e.source in ("storywork_credits", "storywork_subscription"))
    async with session_maker() as session:
        balance = await credits.get_balance(user_id, session)

    assert balance.balance == ledger_total == 225
    assert balance.lifetime_spent == sum(-e.amount for e in entries if e.amount < 0) == 225
    assert balance.lifetime_earned == 450


@pytest.mark.asyncio
async def test_spend_rejects_invalid_amount_and_unknown_user(session_maker):
    async with session_maker() as session:
        invalid = await credits.spend_credits(
            "u1", session, amount=0, transaction_type=CreditTransactionType.CAROUSEL, description="x"
        )
        missing = await credits.spend_credits(
            "nobody", session, amount=75, transaction_type=CreditTransactionType.CAROUSEL, description="x"
        )
    assert invalid.error == "Invalid amount"
    assert missing.error == "User not found"


@pytest.mark.asyncio
async def test_linked_agent_is_charged_remotely_first(session_maker):
    user_id = await _seed_user(session_maker, credit_balance=100, asm_agent_id="agent-1")
    portal = portal_client(lambda request: httpx.Response(200, json={"success": True, "newBalance": 925}))

    async with session_maker() as session:
        result = await credits.spend_credits(
            user_id,
            session,
            amount=75,
            transaction_type=CreditTransactionType.CAROUSEL,
            description="Story generation: s1",
            portal=portal,
        )
    await portal.aclose()

    assert (result.success, result.new_balance) == (True, 925)
    assert await _local_balance(session_maker, user_id) == 100
    [entry] = await _transactions(session_maker, user_id)
    assert entry.source == "asm_credits"
    assert entry.amount == -75


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "remote",
    [
        lambda request: httpx.Response(200, json={"success": False, "error": "Insufficient credits"}),
        lambda request: httpx.Response(500, text="boom"),
    ],
)
async def test_remote_decline_or_outage_falls_back_to_local(session_maker, remote):
    user_id = await _seed_user(session_maker, credit_balance=100, asm_agent_id="agent-1")
    portal = portal_client(remote)

    async with session_maker() as session:
        result = await credits.spend_credits(
            user_id,
            session,
            amount=75,
            transaction_type=CreditTransactionType.CAROUSEL,
            description="x",
            portal=portal,
        )
    await portal.aclose()

    assert (result.success, result.new_balance) == (True, 25)
    [entry] = await _transactions(session_maker, user_id)
    assert entry.source == "storywork_credits"


@pytest.mark.asyncio
async def test_link_to_unknown_agent_leaves_user_unlinked(session_maker):
    user_id = await _seed_user(session_maker)

    async with session_maker() as session:
        result = await credits.link_asm_account(user_id, session, asm_email="agent@example.com")
    async with session_maker() as session:
        agent_id = await session.scalar(select(User.asm_agent_id).where(User.id == user_id))

    assert (result.success, result.error) == (False, "No ASM account found with that email")
    assert agent_id is None


@pytest.mark.asyncio
async def test_link_attaches_agent_and_unified_identity(session_maker):
    user_id = await _seed_user(session_maker)
    async with session_maker() as session:
        session.add(Agent(id="agent-1", email="Agent@Example.com", name="Sam"))
        await session.commit()

    async with session_maker() as session:
        result = await credits.link_asm_account(user_id, session, asm_email=" AGENT@example.com ")

    assert result.success
    async with session_maker() as session:
        assert await session.scalar(select(User.asm_agent_id).where(User.id == user_id)) == "agent-1"
        unified = (await session.execute(select(UnifiedUser))).scalar_one()
    assert unified.email == "agent@example.com"
    assert unified.asm_agent_id == "agent-1"
    assert unified.storywork_user_id == user_id
    assert unified.storywork_clerk_id == "ext-1"


@pytest.mark.asyncio
async def test_recent_transactions_are_newest_first_and_limited(session_maker):
    user_id = await _seed_user(session_maker)
    for amount in (100, 200, 300):
        async with session_maker() as session:
            await credits.add_credits(
                user_id, session, amount=amount, transaction_type="adjustment", description=f"grant {amount}"
            )

    async with session_maker() as session:
        entries = await credits.get_recent_transactions(user_id, session, limit=2)

    assert len(entries) == 2
    assert {entry["type"] for entry in entries} == {"adjustment"}
    assert all(entry["source"] == "storywork_subscription" for entry in entries)
