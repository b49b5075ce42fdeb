"""
JSON codecs for aggregates stored as documents by the SQL store.

Trades and dispute tickets carry nested history, evidence and mediation
logs; they are stored as one JSON payload next to the indexed columns
the queries filter on.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional

from barterdesk.domain.barter.dispute_machine import build_resolution
from barterdesk.domain.barter.entities import (
    CancellationReason,
    DisputeEvidence,
    DisputeStatus,
    DisputeTicket,
    DisputeType,
    MediationMessage,
    PartialRefund,
    Resolution,
    ResolutionKind,
    Trade,
    TradeRating,
    TradeStatus,
    TradeTransition,
    ValuationSource,
)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ──────────────────────────────────────────────────────────────────────
# Trade
# ──────────────────────────────────────────────────────────────────────


def dump_trade(trade: Trade) -> str:
    return json.dumps(
        {
            "id": trade.id,
            "proposer_id": trade.proposer_id,
            "receiver_id": trade.receiver_id,
            "proposer_item_ids": list(trade.proposer_item_ids),
            "receiver_item_ids": list(trade.receiver_item_ids),
            "proposer_cash": trade.proposer_cash,
            "receiver_cash": trade.receiver_cash,
            "created_at": _dt(trade.created_at),
            "updated_at": _dt(trade.updated_at),
            "status": trade.status.value,
            "parent_trade_id": trade.parent_trade_id,
            "counter_message": trade.counter_message,
            "platform_fee_cents": trade.platform_fee_cents,
            "is_fee_waived": trade.is_fee_waived,
            "fee_payer_id": trade.fee_payer_id,
            "proposer_tracking_number": trade.proposer_tracking_number,
            "receiver_tracking_number": trade.receiver_tracking_number,
            "proposer_verified_satisfaction": trade.proposer_verified_satisfaction,
            "receiver_verified_satisfaction": trade.receiver_verified_satisfaction,
            "proposer_rated": trade.proposer_rated,
            "receiver_rated": trade.receiver_rated,
            "delivery_deadline": _dt(trade.delivery_deadline),
            "rating_deadline": _dt(trade.rating_deadline),
            "dispute_ticket_id": trade.dispute_ticket_id,
            "cancellation_reason": (
                trade.cancellation_reason.value if trade.cancellation_reason else None
            ),
            "unavailable_item_id": trade.unavailable_item_id,
            "valuation_snapshot": trade.valuation_snapshot,
            "valuation_sources": {k: v.value for k, v in trade.valuation_sources.items()},
            "escrow_payer_id": trade.escrow_payer_id,
            "escrow_recipient_id": trade.escrow_recipient_id,
            "escrow_amount_cents": trade.escrow_amount_cents,
            "escrow_hold_id": trade.escrow_hold_id,
            "escrow_reservation_key": trade.escrow_reservation_key,
            "history": [
                {
                    "from_status": h.from_status.value if h.from_status else None,
                    "to_status": h.to_status.value,
                    "actor_id": h.actor_id,
                    "at": _dt(h.at),
                    "reason": h.reason,
                }
                for h in trade.history
            ],
        }
    )


def load_trade(payload: str) -> Trade:
    data = json.loads(payload)
    reason = data.get("cancellation_reason")
    return Trade(
        id=data["id"],
        proposer_id=data["proposer_id"],
        receiver_id=data["receiver_id"],
        proposer_item_ids=tuple(data["proposer_item_ids"]),
        receiver_item_ids=tuple(data["receiver_item_ids"]),
        proposer_cash=data["proposer_cash"],
        receiver_cash=data["receiver_cash"],
        created_at=_parse_dt(data["created_at"]),
        updated_at=_parse_dt(data["updated_at"]),
        status=TradeStatus(data["status"]),
        parent_trade_id=data.get("parent_trade_id"),
        counter_message=data.get("counter_message"),
        platform_fee_cents=data.get("platform_fee_cents", 0),
        is_fee_waived=data.get("is_fee_waived", False),
        fee_payer_id=data.get("fee_payer_id"),
        proposer_tracking_number=data.get("proposer_tracking_number"),
        receiver_tracking_number=data.get("receiver_tracking_number"),
        proposer_verified_satisfaction=data.get("proposer_verified_satisfaction", False),
        receiver_verified_satisfaction=data.get("receiver_verified_satisfaction", False),
        proposer_rated=data.get("proposer_rated", False),
        receiver_rated=data.get("receiver_rated", False),
        delivery_deadline=_parse_dt(data.get("delivery_deadline")),
        rating_deadline=_parse_dt(data.get("rating_deadline")),
        dispute_ticket_id=data.get("dispute_ticket_id"),
        cancellation_reason=CancellationReason(reason) if reason else None,
        unavailable_item_id=data.get("unavailable_item_id"),
        valuation_snapshot=dict(data.get("valuation_snapshot", {})),
        valuation_sources={
            k: ValuationSource(v) for k, v in data.get("valuation_sources", {}).items()
        },
        escrow_payer_id=data.get("escrow_payer_id"),
        escrow_recipient_id=data.get("escrow_recipient_id"),
        escrow_amount_cents=data.get("escrow_amount_cents", 0),
        escrow_hold_id=data.get("escrow_hold_id"),
        escrow_reservation_key=data.get("escrow_reservation_key"),
        history=[
            TradeTransition(
                from_status=TradeStatus(h["from_status"]) if h["from_status"] else None,
                to_status=TradeStatus(h["to_status"]),
                actor_id=h["actor_id"],
                at=_parse_dt(h["at"]),
                reason=h.get("reason"),
            )
            for h in data.get("history", [])
        ],
    )


# ──────────────────────────────────────────────────────────────────────
# Dispute ticket
# ──────────────────────────────────────────────────────────────────────


def _dump_resolution(resolution: Optional[Resolution]) -> Optional[dict]:
    if resolution is None:
        return None
    data = {"kind": resolution.kind.value}
    if isinstance(resolution, PartialRefund):
        data["refund_ratio"] = str(resolution.refund_ratio)
    return data


def _load_resolution(data: Optional[dict]) -> Optional[Resolution]:
    if not data:
        return None
    ratio = data.get("refund_ratio")
    return build_resolution(
        ResolutionKind(data["kind"]), Decimal(ratio) if ratio is not None else None
    )


def _dump_evidence(evidence: Optional[DisputeEvidence]) -> Optional[dict]:
    if evidence is None:
        return None
    return {"statement": evidence.statement, "attachments": list(evidence.attachments)}


def _load_evidence(data: Optional[dict]) -> Optional[DisputeEvidence]:
    if data is None:
        return None
    return DisputeEvidence(
        statement=data["statement"], attachments=tuple(data.get("attachments", []))
    )


def dump_ticket(ticket: DisputeTicket) -> str:
    return json.dumps(
        {
            "id": ticket.id,
            "trade_id": ticket.trade_id,
            "initiator_id": ticket.initiator_id,
            "respondent_id": ticket.respondent_id,
            "dispute_type": ticket.dispute_type.value,
            "created_at": _dt(ticket.created_at),
            "updated_at": _dt(ticket.updated_at),
            "deadline_for_next_action": _dt(ticket.deadline_for_next_action),
            "initiator_evidence": _dump_evidence(ticket.initiator_evidence),
            "status": ticket.status.value,
            "respondent_evidence": _dump_evidence(ticket.respondent_evidence),
            "mediation_log": [
                {
                    "id": m.id,
                    "sender_id": m.sender_id,
                    "text": m.text,
                    "timestamp": _dt(m.timestamp),
                }
                for m in ticket.mediation_log
            ],
            "resolution": _dump_resolution(ticket.resolution),
            "resolved_by": ticket.resolved_by,
            "moderator_notes": ticket.moderator_notes,
            "trade_status_before_dispute": (
                ticket.trade_status_before_dispute.value
                if ticket.trade_status_before_dispute
                else None
            ),
        }
    )


def load_ticket(payload: str) -> DisputeTicket:
    data = json.loads(payload)
    before = data.get("trade_status_before_dispute")
    return DisputeTicket(
        id=data["id"],
        trade_id=data["trade_id"],
        initiator_id=data["initiator_id"],
        respondent_id=data["respondent_id"],
        dispute_type=DisputeType(data["dispute_type"]),
        created_at=_parse_dt(data["created_at"]),
        updated_at=_parse_dt(data["updated_at"]),
        deadline_for_next_action=_parse_dt(data["deadline_for_next_action"]),
        initiator_evidence=_load_evidence(data["initiator_evidence"]),
        status=DisputeStatus(data["status"]),
        respondent_evidence=_load_evidence(data.get("respondent_evidence")),
        mediation_log=[
            MediationMessage(
                id=m["id"],
                sender_id=m["sender_id"],
                text=m["text"],
                timestamp=_parse_dt(m["timestamp"]),
            )
            for m in data.get("mediation_log", [])
        ],
        resolution=_load_resolution(data.get("resolution")),
        resolved_by=data.get("resolved_by"),
        moderator_notes=data.get("moderator_notes"),
        trade_status_before_dispute=TradeStatus(before) if before else None,
    )


# ──────────────────────────────────────────────────────────────────────
# Rating
# ──────────────────────────────────────────────────────────────────────


def dump_rating(rating: TradeRating) -> str:
    return json.dumps(
        {
            "id": rating.id,
            "trade_id": rating.trade_id,
            "rater_id": rating.rater_id,
            "ratee_id": rating.ratee_id,
            "overall_score": rating.overall_score,
            "item_accuracy_score": rating.item_accuracy_score,
            "communication_score": rating.communication_score,
            "shipping_speed_score": rating.shipping_speed_score,
            "created_at": _dt(rating.created_at),
            "public_comment": rating.public_comment,
            "private_feedback": rating.private_feedback,
            "is_revealed": rating.is_revealed,
        }
    )


def load_rating(payload: str) -> TradeRating:
    data = json.loads(payload)
    data["created_at"] = _parse_dt(data["created_at"])
    return TradeRating(**data)
