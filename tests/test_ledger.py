import asyncio
import math

import pytest

from crypto_pilot.accounting.ledger import CapitalLedger, CapitalLedgerEntry, TradeResult

from conftest import T0


def test_compounding_matches_product():
    fractions = [(TradeResult.WIN, 0.5), (TradeResult.LOSS, 0.15), (TradeResult.WIN, 0.5), (TradeResult.LOSS, 0.15)]
    ledger = CapitalLedger(1000.0)

    async def run():
        for result, fraction in fractions:
            await ledger.record(result, fraction, T0)

    asyncio.run(run())

    expected = 1000.0 * math.prod(1 + f if r is TradeResult.WIN else 1 - f for r, f in fractions)
    assert ledger.capital == pytest.approx(expected, rel=1e-6)
    assert len(ledger) == len(fractions)


def test_entries_are_immutable_snapshots():
    ledger = CapitalLedger(100.0)
    asyncio.run(ledger.record(TradeResult.WIN, 0.5, T0))
    first = ledger.entries[0]
    asyncio.run(ledger.record(TradeResult.LOSS, 0.15, T0))

    assert ledger.entries[0] is first
    assert first.capital_after == pytest.approx(150.0)
    with pytest.raises(AttributeError):
        first.capital_after = 1.0


def test_concurrent_records_all_applied():
    ledger = CapitalLedger(1000.0)

    async def run():
        await asyncio.gather(*(ledger.record(TradeResult.WIN, 0.01, T0) for _ in range(50)))

    asyncio.run(run())
    assert len(ledger) == 50
    assert ledger.capital == pytest.approx(1000.0 * 1.01**50, rel=1e-6)
    caps = [e.capital_after for e in ledger.entries]
    assert caps == sorted(caps)


def test_resumes_from_last_entry():
    entries = [CapitalLedgerEntry(capital_after=1500.0, result=TradeResult.WIN, ts=T0)]
    ledger = CapitalLedger(1000.0, entries)
    assert ledger.capital == 1500.0


def test_rejects_wipeout_and_bad_capital():
    with pytest.raises(ValueError):
        CapitalLedger(0.0)
    ledger = CapitalLedger(10.0)
    with pytest.raises(ValueError):
        asyncio.run(ledger.record(TradeResult.LOSS, 1.0, T0))
    assert len(ledger) == 0


def test_entry_dict_accepts_legacy_keys():
    entry = CapitalLedgerEntry.from_dict({"capital": 1234.5, "result": "loss", "time": "2024-01-01T00:00:00Z"})
    assert entry.capital_after == 1234.5
    assert entry.result is TradeResult.LOSS
    assert entry.ts == T0
    assert CapitalLedgerEntry.from_dict(entry.to_dict()) == entry
