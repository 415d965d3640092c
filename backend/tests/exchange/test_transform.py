"""Tests for transform_offer."""

from fractions import Fraction

import pytest

from app.exchange.codec import LOKAD_ID_BASE64
from app.exchange.models import RejectReason, UtxoRef
from app.exchange.transform import find_exchange_input, spent_outputs, transform_offer


class TestTransformOffer:
    """Unit tests for turning raw records into verified offers."""

    def test_valid_offer(self, make_record, network, derive, encoder, token_id):
        """A well-formed record with a matching address becomes an Offer."""
        record = make_record("tx1", 25, amount="12.5", block_time=1600000000, value=1000)
        result = transform_offer(record, network, derive, asset_id=token_id, encoder=encoder)

        assert result.ok
        offer = result.offer
        assert offer.utxo_ref == UtxoRef("tx1", 1)
        assert offer.price_per_unit == Fraction(25)
        assert offer.raw_script_price == 25
        assert offer.sale_amount == Fraction(25, 2)
        assert offer.value_held == 1000
        assert offer.settlement_address == record["out"][1]["e"]["a"]
        assert offer.receiving_address == encoder("P2PKH", bytes(range(20)))
        assert offer.created_at == 1600000000

    def test_unconfirmed_offer_has_no_timestamp(self, make_record, network, derive, encoder):
        result = transform_offer(make_record("tx1", 5), network, derive, encoder=encoder)
        assert result.ok
        assert result.offer.created_at is None
        assert not result.offer.is_confirmed

    def test_inverted_offer_with_decimals(self, make_record, network, derive, encoder):
        """Decimals come from the record when not given explicitly."""
        record = make_record("tx1", 4, decimals=2, inverted=True)
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.ok
        assert result.offer.price_per_unit == Fraction(100, 4)

    def test_explicit_decimals_override_record(self, make_record, network, derive, encoder):
        """Passing other decimals changes the derived terms, so verification fails."""
        record = make_record("tx1", 4, decimals=2)
        result = transform_offer(record, network, derive, decimals=3, encoder=encoder)
        assert result.reason is RejectReason.ADDRESS_MISMATCH

    def test_wrong_asset(self, make_record, network, derive, encoder, other_token_id):
        record = make_record("tx1", 5)
        result = transform_offer(record, network, derive, asset_id=other_token_id, encoder=encoder)
        assert not result.ok
        assert result.reason is RejectReason.WRONG_ASSET

    def test_invalid_token_transaction(self, make_record, network, derive, encoder):
        record = make_record("tx1", 5)
        record["slp"]["valid"] = False
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.INVALID_TOKEN_TX

    def test_no_exchange_input(self, make_spend, network, derive, encoder):
        """A plain token transfer is not an offer."""
        result = transform_offer(make_spend("tx1", [("x", 0)]), network, derive, encoder=encoder)
        assert result.reason is RejectReason.NO_EXCHANGE_INPUT

    def test_wrong_version_op(self, make_record, network, derive, encoder):
        record = make_record("tx1", 5)
        record["in"][0]["b1"] = {"op": 0x51}
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.NO_EXCHANGE_INPUT

    def test_version_must_be_an_opcode(self, make_record, network, derive, encoder):
        """A data push where the opcode should be does not count as the marker."""
        record = make_record("tx1", 5)
        record["in"][0]["b1"] = "Ug=="
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.NO_EXCHANGE_INPUT

    @pytest.mark.parametrize("field", ["b2", "b3", "b4"])
    def test_missing_offer_field(self, make_record, network, derive, encoder, field):
        record = make_record("tx1", 5)
        del record["in"][0][field]
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.MISSING_FIELDS

    def test_malformed_price(self, make_record, network, derive, encoder):
        """A 3-byte price is caught and reported, not raised."""
        record = make_record("tx1", 5)
        record["in"][0]["b3"] = "AAAB"
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED

    def test_missing_covenant_output(self, make_record, network, derive, encoder):
        record = make_record("tx1", 5)
        record["out"] = record["out"][:1]
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED

    def test_missing_token_outputs(self, make_record, network, derive, encoder):
        record = make_record("tx1", 5)
        record["slp"]["detail"]["outputs"] = []
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED

    def test_deriver_value_error_is_malformed(self, make_record, network, encoder):
        def derive(*args):
            raise ValueError("unsupported terms")

        result = transform_offer(make_record("tx1", 5), network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED
        assert "unsupported terms" in result.detail

    def test_any_deriver_error_is_malformed(self, make_record, network, encoder):
        """Errors of any type from the contracts library reject the record instead of escaping."""

        class ContractError(Exception):
            pass

        def derive(*args):
            raise ContractError("script too large")

        result = transform_offer(make_record("tx1", 5), network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED
        assert "ContractError" in result.detail

    def test_encoder_error_is_malformed(self, make_record, network, derive):
        def encoder(address_type, hash160):
            raise RuntimeError("unsupported hash")

        result = transform_offer(make_record("tx1", 5), network, derive, encoder=encoder)
        assert result.reason is RejectReason.MALFORMED

    def test_address_mismatch(self, make_record, network, derive, encoder):
        """A record paying to an address that its terms do not produce is rejected."""
        record = make_record("tx1", 5, settlement_address="bitcoincash:pspoofed")
        result = transform_offer(record, network, derive, encoder=encoder)
        assert not result.ok
        assert result.reason is RejectReason.ADDRESS_MISMATCH

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda r: r["in"][0].update(b3="AAAABg=="),  # different price
            lambda r: r["in"][0].update(b2="AAE="),  # inverted
            lambda r: r["in"][0].update(b4="AQEBAQEBAQEBAQEBAQEBAQEBAQE="),  # other receiver
            lambda r: r["slp"]["detail"]["outputs"][0].update(amount="101"),  # other amount
            lambda r: r["slp"]["detail"].update(decimals=1),  # other decimals
        ],
    )
    def test_tampered_terms_fail_verification(self, make_record, network, derive, encoder, mutate):
        """Changing any term after the fact breaks the address check."""
        record = make_record("tx1", 5)
        mutate(record)
        result = transform_offer(record, network, derive, encoder=encoder)
        assert result.reason is RejectReason.ADDRESS_MISMATCH

    def test_other_fee_settings_fail_verification(self, make_record, network, derive, encoder):
        from app.exchange.network import NetworkSettings

        other = NetworkSettings(network.fee_address, network.fee_address_slp, network.fee_divisor + 1)
        result = transform_offer(make_record("tx1", 5), other, derive, encoder=encoder)
        assert result.reason is RejectReason.ADDRESS_MISMATCH


class TestFindExchangeInput:
    """Tests for locating the marked input."""

    def test_first_marked_input_wins(self, make_record):
        record = make_record("tx1", 5)
        second = dict(record["in"][0], b3="AAAAAQ==")
        record["in"] = [{"e": {"h": "x", "i": 0}}, record["in"][0], second]
        assert find_exchange_input(record) is record["in"][1]

    def test_none_without_marker(self):
        record = {"in": [{"b0": "other", "e": {"h": "x", "i": 0}}]}
        assert find_exchange_input(record) is None

    def test_no_inputs(self):
        assert find_exchange_input({}) is None

    def test_marker_requires_lokad_id(self):
        record = {"in": [{"b0": LOKAD_ID_BASE64 + "x", "b1": {"op": 0x52}}]}
        assert find_exchange_input(record) is None


class TestSpentOutputs:
    def test_all_inputs_reported(self, make_record):
        record = make_record("tx1", 5, spends=[("old", 1), ("older", 3)])
        assert spent_outputs(record) == [UtxoRef("funding-tx1", 0), UtxoRef("old", 1), UtxoRef("older", 3)]

    def test_unreadable_input_skipped(self, make_record):
        """One input without an outpoint does not hide the record's other spends."""
        record = make_record("tx1", 5, spends=[("old", 1)])
        record["in"].insert(1, {"b0": "c2ln"})
        record["in"].append({"e": {"h": "bad", "i": "x"}})
        assert spent_outputs(record) == [UtxoRef("funding-tx1", 0), UtxoRef("old", 1)]

    def test_no_inputs(self):
        assert spent_outputs({"tx": {"h": "x"}}) == []
