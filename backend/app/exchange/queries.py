"""SLPDB / SLPSocket query documents used by the HTTP indexer source.

Queries are Mongo-style documents; both services take them base64-encoded
in the URL path.
"""

from __future__ import annotations

import base64
import json
from typing import Any

from .codec import LOKAD_ID_BASE64, VERSION_OP
from .transform import COVENANT_VOUT

VERSION = {"op": VERSION_OP}

_EXCHANGE_MATCH = {
    "in.b0": LOKAD_ID_BASE64,
    "in.b1": VERSION,
    "slp.valid": True,
}

# Accepted trades pay the fee output, so they have two or three token outputs.
_ACCEPTED_TRADE_OUTPUTS = {
    "$or": [
        {"slp.detail.outputs": {"$size": 2}},
        {"slp.detail.outputs": {"$size": 3}},
    ]
}


def encode_query(query: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(query).encode("utf-8")).decode("ascii")


def _with_token(match: dict[str, Any], asset_id: str | None) -> dict[str, Any]:
    if asset_id is None:
        return match
    return {**match, "slp.detail.tokenIdHex": asset_id}


def _utxo_lookup() -> list[dict[str, Any]]:
    return [
        {"$addFields": {"utxoId": {"$concat": ["$tx.h", f":{COVENANT_VOUT}"]}}},
        {"$lookup": {
            "from": "utxos",
            "localField": "utxoId",
            "foreignField": "utxo",
            "as": "foundUtxo",
        }},
    ]


def open_offers_query(asset_id: str | None) -> dict[str, Any]:
    """Exchange transactions whose covenant output is still unspent."""
    return {
        "v": 3,
        "q": {
            "db": ["c", "u"],
            "aggregate": [
                {"$match": _with_token(_EXCHANGE_MATCH, asset_id)},
                *_utxo_lookup(),
                {"$match": {"foundUtxo": {"$ne": []}}},
            ],
        },
    }


def offers_stream_query(asset_id: str | None) -> dict[str, Any]:
    """Live exchange transactions."""
    return {"v": 3, "q": {"find": _with_token(_EXCHANGE_MATCH, asset_id)}}


def spends_stream_query(asset_id: str | None) -> dict[str, Any]:
    """Live token transactions that are not exchange transactions (cancels, takes)."""
    match = {
        "in.b0": {"$ne": LOKAD_ID_BASE64},
        "in.b1": {"$ne": VERSION},
        "in.b2": {"op": 0},
        "slp.valid": True,
    }
    return {"v": 3, "q": {"find": _with_token(match, asset_id)}}


def trade_totals_query() -> dict[str, Any]:
    """Per token: open/closed offer counts and the newest exchange transaction."""
    return {
        "v": 3,
        "q": {
            "db": ["c", "u"],
            "aggregate": [
                {"$match": _EXCHANGE_MATCH},
                *_utxo_lookup(),
                {"$addFields": {
                    "exchInput": {"$arrayElemAt": [
                        {"$filter": {
                            "input": "$in",
                            "as": "input",
                            "cond": {"$and": [
                                {"$eq": ["$$input.b0", LOKAD_ID_BASE64]},
                                {"$eq": ["$$input.b1", VERSION]},
                            ]},
                        }},
                        0,
                    ]},
                    "hasUtxo": {"$size": "$foundUtxo"},
                }},
                {"$sort": {"hasUtxo": -1, "blk.t": -1}},
                {"$group": {
                    "_id": "$slp.detail.tokenIdHex",
                    "decimals": {"$first": "$slp.detail.decimals"},
                    "numberOfOpenOffers": {"$sum": "$hasUtxo"},
                    "numberOfClosedOffers": {"$sum": {"$subtract": [1, "$hasUtxo"]}},
                    "lastTrade": {"$first": {
                        "timestamp": "$blk.t",
                        "power": "$exchInput.b2",
                        "price": "$exchInput.b3",
                        "isAccepted": {"$ne": ["$foundUtxo", []]},
                    }},
                }},
            ],
        },
    }


def volume_24h_query(fee_address_slp: str, since: float) -> dict[str, Any]:
    """Per token: accepted trades, traded tokens and satoshis since the given time."""
    return {
        "v": 3,
        "q": {
            "db": ["c", "u"],
            "aggregate": [
                {"$match": {
                    **_EXCHANGE_MATCH,
                    "out.e.a": fee_address_slp,
                    "$and": [
                        _ACCEPTED_TRADE_OUTPUTS,
                        {"$or": [
                            {"blk": {"$exists": False}},
                            {"blk.t": {"$gt": since}},
                        ]},
                    ],
                }},
                {"$addFields": {
                    "tradedTokens": {"$arrayElemAt": ["$slp.detail.outputs", -1]},
                    "tradedSatoshis": {"$arrayElemAt": [
                        "$out",
                        {"$subtract": [{"$size": "$slp.detail.outputs"}, 1]},
                    ]},
                }},
                {"$project": {
                    "tokenId": "$slp.detail.tokenIdHex",
                    "tradedTokens": {"$toDecimal": "$tradedTokens.amount"},
                    "tradedSatoshis": "$tradedSatoshis.e.v",
                    "slp": "$slp",
                }},
                {"$group": {
                    "_id": "$tokenId",
                    "volumeTokens": {"$sum": "$tradedTokens"},
                    "volumeSatoshis": {"$sum": "$tradedSatoshis"},
                    "numberOfTrades": {"$sum": 1},
                    "decimals": {"$first": "$slp.detail.decimals"},
                }},
            ],
        },
    }


def price_24h_query(fee_address_slp: str, before: float) -> dict[str, Any]:
    """Per token: price of the newest accepted trade confirmed before the given time."""
    return {
        "v": 3,
        "q": {
            "db": ["c"],
            "aggregate": [
                {"$match": {
                    **_EXCHANGE_MATCH,
                    "out.e.a": fee_address_slp,
                    **_ACCEPTED_TRADE_OUTPUTS,
                    "blk.t": {"$lt": before},
                }},
                {"$sort": {"blk.t": -1}},
                {"$unwind": "$in"},
                {"$match": {"in.b0": LOKAD_ID_BASE64, "in.b1": VERSION}},
                {"$group": {
                    "_id": "$slp.detail.tokenIdHex",
                    "price": {"$first": "$in.b3"},
                    "power": {"$first": "$in.b2"},
                    "decimals": {"$first": "$slp.detail.decimals"},
                    "timestamp": {"$first": "$blk.t"},
                }},
            ],
        },
    }
