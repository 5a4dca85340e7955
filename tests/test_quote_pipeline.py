"""
Unit tests for the quote pipeline.

Tests follow the Given/When/Then pattern for clarity.
"""

import asyncio
import json
import threading
import time
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from scooper.lib.errors import LedgerConnectionError, QuoteError, SwapError
from scooper.lib.events import AssetFailed, AssetFound, QuoteFound, SwapFound
from scooper.lib.jupiter_client import JUPITER_QUOTE_API, U64_MAX, JupiterClient
from scooper.lib.models import SwapPayload, TokenInfo
from scooper.lib.quote_pipeline import QuotePipeline, find_quotes, quote_amount

OUTPUT_MINT = "So11111111111111111111111111111111111111112"


def collect(pipeline, balances):
    async def _collect():
        return [event async for event in pipeline.stream(balances)]

    return asyncio.run(_collect())


def events_for(events, asset_id):
    return [type(event) for event in events if event.asset_id == asset_id]


def mock_aggregator(make_quote, failing_quotes=(), failing_swaps=()):
    aggregator = Mock()

    def get_quote(input_mint, output_mint, amount):
        if input_mint in failing_quotes:
            raise QuoteError("No route")
        return make_quote(input_mint, amount)

    def get_swap(wallet, quote):
        if quote.input_mint in failing_swaps:
            raise SwapError("Swap build failed")
        return SwapPayload(swap_transaction=f"tx-{quote.input_mint}")

    aggregator.get_quote.side_effect = get_quote
    aggregator.get_swap.side_effect = get_swap
    return aggregator


class TestQuoteAmount:
    """Tests for the quote amount check."""

    def test_passes_exact_balance(self, make_balance, usdc_token):
        # Given
        balance = make_balance(usdc_token, 2**53 + 1)

        # When / Then
        assert quote_amount(balance) == 2**53 + 1

    def test_rejects_balance_beyond_u64(self, make_balance, usdc_token):
        # Given
        balance = make_balance(usdc_token, U64_MAX + 1)

        # When / Then
        with pytest.raises(QuoteError, match="exceeds"):
            quote_amount(balance)


class TestQuotePipeline:
    """Tests for QuotePipeline.stream and run."""

    def test_rejects_non_positive_concurrency(self):
        with pytest.raises(ValueError):
            QuotePipeline(Mock(), OUTPUT_MINT, "Wallet", max_concurrency=0)

    def test_emits_found_quote_swap_in_order(self, make_balance, make_quote, usdc_token):
        """
        Given one asset with a balance
        When the pipeline runs
        Then AssetFound, QuoteFound and SwapFound should be emitted in that order
        """
        # Given
        aggregator = mock_aggregator(make_quote)
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")
        balance = make_balance(usdc_token, 50000000)

        # When
        events = collect(pipeline, [balance])

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound, QuoteFound, SwapFound]
        aggregator.get_quote.assert_called_once_with(usdc_token.address, OUTPUT_MINT, 50000000)
        quote = events[1].quote
        aggregator.get_swap.assert_called_once_with("Wallet", quote)

    def test_quote_failure_skips_swap_call(self, make_balance, make_quote, usdc_token):
        """
        Given an aggregator that cannot quote the asset
        When the pipeline runs
        Then a quote-stage failure should be reported and no swap requested
        """
        # Given
        aggregator = mock_aggregator(make_quote, failing_quotes={usdc_token.address})
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")

        # When
        events = collect(pipeline, [make_balance(usdc_token, 10)])

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound, AssetFailed]
        assert events[-1].stage == "quote"
        assert "Couldn't get quote" in events[-1].reason
        aggregator.get_swap.assert_not_called()

    def test_swap_failure_reported_after_quote(self, make_balance, make_quote, usdc_token):
        # Given
        aggregator = mock_aggregator(make_quote, failing_swaps={usdc_token.address})
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")

        # When
        events = collect(pipeline, [make_balance(usdc_token, 10)])

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound, QuoteFound, AssetFailed]
        assert events[-1].stage == "swap"
        assert "Couldn't get swap transaction" in events[-1].reason

    def test_failure_on_one_asset_does_not_affect_sibling(
        self, make_balance, make_quote, usdc_token, bonk_token
    ):
        """
        Given two assets where the first asset's quote fails
        When the pipeline runs
        Then the second asset should still get its quote and swap
        """
        # Given
        aggregator = mock_aggregator(make_quote, failing_quotes={usdc_token.address})
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")
        balances = [make_balance(usdc_token, 10), make_balance(bonk_token, 20)]

        # When
        events = collect(pipeline, balances)

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound, AssetFailed]
        assert events_for(events, bonk_token.address) == [AssetFound, QuoteFound, SwapFound]

    def test_zero_balance_is_found_but_not_quoted(self, make_balance, make_quote, usdc_token):
        """
        Given an empty token account
        When the pipeline runs
        Then only AssetFound should be emitted and the aggregator left alone
        """
        # Given
        aggregator = mock_aggregator(make_quote)
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")

        # When
        events = collect(pipeline, [make_balance(usdc_token, 0)])

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound]
        aggregator.get_quote.assert_not_called()
        aggregator.get_swap.assert_not_called()

    def test_oversized_balance_reported_without_request(self, make_balance, make_quote, usdc_token):
        # Given
        aggregator = mock_aggregator(make_quote)
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")

        # When
        events = collect(pipeline, [make_balance(usdc_token, U64_MAX + 1)])

        # Then
        assert events_for(events, usdc_token.address) == [AssetFound, AssetFailed]
        assert events[-1].stage == "quote"
        aggregator.get_quote.assert_not_called()

    def test_duplicate_mint_is_processed_once(self, make_balance, make_quote, usdc_token):
        """
        Given two token accounts for the same mint
        When the pipeline runs
        Then the mint should be processed once
        """
        # Given
        aggregator = mock_aggregator(make_quote)
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")
        first = make_balance(usdc_token, 10)

        # When
        events = collect(pipeline, [first, make_balance(usdc_token, 20)])

        # Then
        found = [e for e in events if isinstance(e, AssetFound)]
        assert len(found) == 1
        assert found[0].balance is first
        assert aggregator.get_quote.call_count == 1

    def test_never_exceeds_max_concurrency(self, make_balance, make_quote):
        """
        Given more assets than the concurrency limit
        When the pipeline runs against a slow aggregator
        Then no more than max_concurrency quotes should be in flight at once
        """
        # Given
        lock = threading.Lock()
        in_flight = {"now": 0, "peak": 0}

        def slow_quote(input_mint, output_mint, amount):
            with lock:
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            time.sleep(0.02)
            with lock:
                in_flight["now"] -= 1
            return make_quote(input_mint, amount)

        aggregator = Mock()
        aggregator.get_quote.side_effect = slow_quote
        aggregator.get_swap.return_value = SwapPayload(swap_transaction="tx")
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet", max_concurrency=2)
        balances = [
            make_balance(TokenInfo(address=f"Mint{i}", decimals=6, name="", symbol=""), 10)
            for i in range(6)
        ]

        # When
        events = collect(pipeline, balances)

        # Then
        assert aggregator.get_quote.call_count == 6
        assert len([e for e in events if isinstance(e, SwapFound)]) == 6
        assert in_flight["peak"] <= 2

    def test_run_folds_events_into_assets(
        self, make_balance, make_quote, usdc_token, bonk_token, wsol_token
    ):
        """
        Given a swap-ready asset, a failing asset and an empty asset
        When running the pipeline
        Then each asset record should hold its own results
        """
        # Given
        aggregator = mock_aggregator(make_quote, failing_quotes={bonk_token.address})
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")
        balances = [
            make_balance(usdc_token, 10),
            make_balance(bonk_token, 20),
            make_balance(wsol_token, 0),
        ]
        seen = []

        # When
        assets = asyncio.run(pipeline.run(balances, on_event=seen.append))

        # Then
        assert set(assets) == {usdc_token.address, bonk_token.address, wsol_token.address}
        assert assets[usdc_token.address].quote.input_mint == usdc_token.address
        assert assets[usdc_token.address].swap.swap_transaction == f"tx-{usdc_token.address}"
        assert assets[bonk_token.address].quote is None
        assert "Couldn't get quote" in assets[bonk_token.address].error
        assert assets[wsol_token.address].swap is None
        assert len(seen) == 6  # found x3, quote, swap, error
        assert not any(asset.approved for asset in assets.values())

    def test_unexpected_quote_error_does_not_affect_sibling(
        self, make_balance, make_quote, usdc_token, bonk_token
    ):
        # Given
        aggregator = Mock()

        def get_quote(input_mint, output_mint, amount):
            if input_mint == usdc_token.address:
                raise RuntimeError("connection pool is closed")
            return make_quote(input_mint, amount)

        aggregator.get_quote.side_effect = get_quote
        aggregator.get_swap.side_effect = AttributeError("swap response was null")
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, "Wallet")
        balances = [make_balance(usdc_token, 10), make_balance(bonk_token, 20)]

        # When
        assets = asyncio.run(pipeline.run(balances))

        # Then
        assert "connection pool is closed" in assets[usdc_token.address].error
        assert assets[usdc_token.address].quote is None
        assert assets[bonk_token.address].quote is not None
        assert "Couldn't get swap transaction" in assets[bonk_token.address].error

    @responses.activate
    def test_null_quote_body_does_not_affect_sibling(
        self, sample_solana_address, make_balance, usdc_token, bonk_token
    ):
        """
        Given an aggregator that answers one asset's quote with a null body
        When running the pipeline with the real client
        Then that asset should fail at the quote stage and its sibling still get a swap
        """
        # Given
        def quote_callback(request):
            params = parse_qs(urlparse(request.url).query)
            mint = params["inputMint"][0]
            if mint == usdc_token.address:
                return (200, {}, "null")
            body = {
                "inputMint": mint,
                "outputMint": OUTPUT_MINT,
                "inAmount": params["amount"][0],
                "outAmount": "1000",
                "otherAmountThreshold": "995",
                "slippageBps": 50,
                "routePlan": [],
            }
            return (200, {}, json.dumps(body))

        responses.add_callback(
            responses.GET, f"{JUPITER_QUOTE_API}/quote", callback=quote_callback
        )
        responses.add(
            responses.POST,
            f"{JUPITER_QUOTE_API}/swap",
            json={"swapTransaction": "AQID", "lastValidBlockHeight": 10},
        )
        client = JupiterClient(max_retries=0)
        pipeline = QuotePipeline(client, OUTPUT_MINT, sample_solana_address)
        balances = [make_balance(usdc_token, 10), make_balance(bonk_token, 20)]
        seen = []

        # When
        assets = asyncio.run(pipeline.run(balances, on_event=seen.append))

        # Then
        assert "Malformed quote" in assets[usdc_token.address].error
        assert assets[bonk_token.address].swap.swap_transaction == "AQID"
        assert events_for(seen, bonk_token.address) == [AssetFound, QuoteFound, SwapFound]

    def test_empty_input_completes(self, make_quote):
        # Given
        pipeline = QuotePipeline(mock_aggregator(make_quote), OUTPUT_MINT, "Wallet")

        # When
        events = collect(pipeline, [])

        # Then
        assert events == []


class TestFindQuotes:
    """Tests for the scan-then-quote entry point."""

    def test_scans_then_runs_pipeline(
        self, sample_solana_address, token_directory, make_balance, make_quote, usdc_token
    ):
        # Given
        scanner = Mock()
        scanner.scan.return_value = [make_balance(usdc_token, 10)]
        pipeline = QuotePipeline(mock_aggregator(make_quote), OUTPUT_MINT, sample_solana_address)

        # When
        assets = asyncio.run(find_quotes(scanner, pipeline, sample_solana_address, token_directory))

        # Then
        scanner.scan.assert_called_once_with(sample_solana_address, token_directory)
        assert assets[usdc_token.address].swap is not None

    def test_scan_failure_is_logged_and_yields_no_assets(
        self, sample_solana_address, token_directory, make_quote, capsys
    ):
        """
        Given a scanner whose ledger is unreachable
        When finding quotes
        Then the failure should be logged and an empty result returned
        """
        # Given
        scanner = Mock()
        scanner.scan.side_effect = LedgerConnectionError("connection refused")
        aggregator = mock_aggregator(make_quote)
        pipeline = QuotePipeline(aggregator, OUTPUT_MINT, sample_solana_address)
        seen = []

        # When
        assets = asyncio.run(
            find_quotes(
                scanner, pipeline, sample_solana_address, token_directory, on_event=seen.append
            )
        )

        # Then
        assert assets == {}
        assert seen == []
        aggregator.get_quote.assert_not_called()
        assert "Scan failed" in capsys.readouterr().err
