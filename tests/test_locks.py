"""Tests for per-wallet locks."""

import asyncio

import pytest

from ergovault.utils.locks import (
    LockTimeoutError,
    WalletLock,
    clear_wallet_locks,
    get_wallet_lock,
    wallet_lock,
)


class TestWalletLocks:
    """Tests for the wallet lock registry and context managers."""

    def test_same_wallet_gets_same_lock(self):
        """Test that get_wallet_lock returns one lock per wallet."""
        assert get_wallet_lock(1) is get_wallet_lock(1)

    def test_different_wallets_get_different_locks(self):
        assert get_wallet_lock(1) is not get_wallet_lock(2)

    @pytest.mark.asyncio
    async def test_wallet_lock_context_manager(self):
        """Test WalletLock holds the lock only inside the block."""
        async with WalletLock(100, operation="test"):
            lock = get_wallet_lock(100)
            assert lock.locked()

        assert not lock.locked()

    @pytest.mark.asyncio
    async def test_lock_serializes_same_wallet(self):
        """Test that two operations on one wallet never interleave."""
        results = []

        async def task(name):
            async with WalletLock(200, timeout=10.0, operation=f"task_{name}"):
                results.append(f"{name}_start")
                await asyncio.sleep(0.05)
                results.append(f"{name}_end")

        await asyncio.gather(task("A"), task("B"))

        assert results in [
            ["A_start", "A_end", "B_start", "B_end"],
            ["B_start", "B_end", "A_start", "A_end"],
        ]

    @pytest.mark.asyncio
    async def test_different_wallets_run_in_parallel(self):
        """Test that locks on different wallets do not block each other."""
        results = []

        async def task(wallet_id):
            async with WalletLock(wallet_id, timeout=10.0):
                results.append(f"{wallet_id}_start")
                await asyncio.sleep(0.05)
                results.append(f"{wallet_id}_end")

        await asyncio.gather(task(1), task(2))

        assert results[:2] == ["1_start", "2_start"]

    @pytest.mark.asyncio
    async def test_lock_timeout_raises_error(self):
        """Test that lock timeout raises LockTimeoutError."""

        async def hold_lock():
            async with WalletLock(300, timeout=5.0):
                await asyncio.sleep(0.5)

        hold_task = asyncio.create_task(hold_lock())
        await asyncio.sleep(0.05)

        with pytest.raises(LockTimeoutError):
            async with WalletLock(300, timeout=0.1):
                pass

        await hold_task
        assert not get_wallet_lock(300).locked()

    @pytest.mark.asyncio
    async def test_failed_acquire_does_not_release_holder(self):
        """Test that a timed-out waiter leaves the holder's lock alone."""
        lock = get_wallet_lock(350)
        await lock.acquire()

        with pytest.raises(LockTimeoutError):
            async with wallet_lock(350, timeout=0.05):
                pass

        assert lock.locked()
        lock.release()

    @pytest.mark.asyncio
    async def test_functional_context_manager_releases_on_error(self):
        with pytest.raises(RuntimeError):
            async with wallet_lock(400, operation="test"):
                assert get_wallet_lock(400).locked()
                raise RuntimeError("boom")

        assert not get_wallet_lock(400).locked()

    def test_clear_wallet_locks(self):
        """Test that clear_wallet_locks drops all locks."""
        first = get_wallet_lock(1)
        clear_wallet_locks()
        assert get_wallet_lock(1) is not first
