"""
Domain service: Dispute sub-machine.

Pure business logic for dispute tickets attached to a trade.
No framework imports. No IO.

States:
    OPEN_AWAITING_RESPONSE ──▶ IN_MEDIATION ──▶ ESCALATED_TO_MODERATOR ──▶ RESOLVED
            │                                                   ▲
            ├──────────────────── (moderator) ──────────────────┘
            └──▶ CLOSED_AUTOMATICALLY   (response deadline elapsed)

A ticket left in mediation past its deadline escalates on its own.

Only the non-initiating party may answer. Only a moderator may set the
resolution, and once set the ticket never changes again.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from barterdesk.domain.barter.entities import (
    DisputeEvidence,
    DisputeStatus,
    DisputeTicket,
    DisputeType,
    FullRefund,
    MediationMessage,
    PartialRefund,
    Resolution,
    ResolutionKind,
    Trade,
    TradeReversal,
    TradeUpheld,
    User,
)
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    DisputeClosedError,
    InvalidResolutionError,
    InvalidTransitionError,
    MissingFieldError,
)

OPEN_STATUSES = frozenset(
    {
        DisputeStatus.OPEN_AWAITING_RESPONSE,
        DisputeStatus.IN_MEDIATION,
        DisputeStatus.ESCALATED_TO_MODERATOR,
    }
)


@dataclass(frozen=True)
class DisputePolicy:
    """Timing and fallback rules for disputes.

    Attributes:
        response_window: Time the respondent has to submit evidence.
        mediation_window: Time the parties get to settle in mediation.
            Once it passes the deadline sweep hands the ticket to a
            moderator.
        round_limit: Party messages allowed in mediation before the
            ticket escalates on its own.
        default_resolution: Applied when the respondent never answers.
            The initiator's claim then stands unrebutted.
    """

    response_window: timedelta = timedelta(hours=72)
    mediation_window: timedelta = timedelta(hours=120)
    round_limit: int = 6
    default_resolution: Resolution = PartialRefund(refund_ratio=Decimal("0.5"))


def _ensure_open(ticket: DisputeTicket) -> None:
    if ticket.is_closed or ticket.resolution is not None:
        raise DisputeClosedError(ticket.id)


def _evidence(statement: str, attachments: tuple[str, ...]) -> DisputeEvidence:
    if not statement or not statement.strip():
        raise MissingFieldError("statement")
    return DisputeEvidence(statement=statement.strip(), attachments=tuple(attachments))


def open_ticket(
    ticket_id: str,
    trade: Trade,
    initiator_id: str,
    dispute_type: DisputeType,
    statement: str,
    attachments: tuple[str, ...],
    now: datetime,
    policy: DisputePolicy,
) -> DisputeTicket:
    """Create a new ticket for a trade. The trade itself is not touched."""
    if not trade.is_party(initiator_id):
        raise ActorNotPermittedError(initiator_id, f"open a dispute on trade {trade.id}")
    evidence = _evidence(statement, attachments)
    return DisputeTicket(
        id=ticket_id,
        trade_id=trade.id,
        initiator_id=initiator_id,
        respondent_id=trade.counterparty_of(initiator_id),
        dispute_type=dispute_type,
        created_at=now,
        updated_at=now,
        deadline_for_next_action=now + policy.response_window,
        initiator_evidence=evidence,
        trade_status_before_dispute=trade.status,
    )


def submit_response(
    ticket: DisputeTicket,
    respondent_id: str,
    statement: str,
    attachments: tuple[str, ...],
    now: datetime,
    policy: DisputePolicy,
) -> None:
    """Record the respondent's evidence and move into mediation."""
    _ensure_open(ticket)
    if respondent_id != ticket.respondent_id:
        raise ActorNotPermittedError(
            respondent_id, f"respond to dispute {ticket.id}"
        )
    if ticket.status is not DisputeStatus.OPEN_AWAITING_RESPONSE:
        raise InvalidTransitionError(ticket.id, ticket.status.value, "respond to")
    ticket.respondent_evidence = _evidence(statement, attachments)
    ticket.status = DisputeStatus.IN_MEDIATION
    ticket.deadline_for_next_action = now + policy.mediation_window
    ticket.updated_at = now


def post_message(
    ticket: DisputeTicket,
    message_id: str,
    sender: User,
    text: str,
    now: datetime,
    policy: DisputePolicy,
) -> bool:
    """Append to the mediation log.

    Returns:
        True if this message pushed the ticket over the round limit and
        escalated it.
    """
    _ensure_open(ticket)
    is_party = sender.id in (ticket.initiator_id, ticket.respondent_id)
    if not (is_party or sender.is_moderator):
        raise ActorNotPermittedError(sender.id, f"post to dispute {ticket.id}")
    if ticket.status not in (
        DisputeStatus.IN_MEDIATION,
        DisputeStatus.ESCALATED_TO_MODERATOR,
    ):
        raise InvalidTransitionError(ticket.id, ticket.status.value, "post to")
    if not text or not text.strip():
        raise MissingFieldError("text")

    ticket.mediation_log.append(
        MediationMessage(id=message_id, sender_id=sender.id, text=text.strip(), timestamp=now)
    )
    ticket.updated_at = now

    party_messages = sum(
        1
        for m in ticket.mediation_log
        if m.sender_id in (ticket.initiator_id, ticket.respondent_id)
    )
    if (
        ticket.status is DisputeStatus.IN_MEDIATION
        and party_messages > policy.round_limit
    ):
        ticket.status = DisputeStatus.ESCALATED_TO_MODERATOR
        return True
    return False


def escalate(ticket: DisputeTicket, actor_id: str, now: datetime) -> None:
    """A party asks for a moderator."""
    _ensure_open(ticket)
    if actor_id not in (ticket.initiator_id, ticket.respondent_id):
        raise ActorNotPermittedError(actor_id, f"escalate dispute {ticket.id}")
    if ticket.status is not DisputeStatus.IN_MEDIATION:
        raise InvalidTransitionError(ticket.id, ticket.status.value, "escalate")
    ticket.status = DisputeStatus.ESCALATED_TO_MODERATOR
    ticket.updated_at = now


def build_resolution(
    kind: ResolutionKind, refund_ratio: Optional[Decimal] = None
) -> Resolution:
    """Build the resolution variant for a kind.

    ``refund_ratio`` is only meaningful for PARTIAL_REFUND and defaults
    to an even split there.
    """
    if kind is ResolutionKind.TRADE_UPHELD:
        return TradeUpheld()
    if kind is ResolutionKind.FULL_REFUND:
        return FullRefund()
    if kind is ResolutionKind.TRADE_REVERSAL:
        return TradeReversal()
    if refund_ratio is None:
        return PartialRefund()
    return PartialRefund(refund_ratio=Decimal(refund_ratio))


def validate_resolution(resolution: Resolution) -> None:
    if isinstance(resolution, PartialRefund):
        ratio = resolution.refund_ratio
        if ratio < 0 or ratio > 1:
            raise InvalidResolutionError("refund ratio must be between 0 and 1")


def resolve(
    ticket: DisputeTicket,
    moderator: User,
    resolution: Resolution,
    now: datetime,
    notes: Optional[str] = None,
) -> None:
    """Set the resolution. One-way: there is no retraction path."""
    if not moderator.is_moderator:
        raise ActorNotPermittedError(moderator.id, f"resolve dispute {ticket.id}")
    _ensure_open(ticket)
    validate_resolution(resolution)
    ticket.resolution = resolution
    ticket.resolved_by = moderator.id
    ticket.moderator_notes = notes
    ticket.status = DisputeStatus.RESOLVED
    ticket.updated_at = now


def is_response_overdue(ticket: DisputeTicket, now: datetime) -> bool:
    return (
        ticket.status is DisputeStatus.OPEN_AWAITING_RESPONSE
        and now >= ticket.deadline_for_next_action
    )


def close_automatically(
    ticket: DisputeTicket, now: datetime, policy: DisputePolicy
) -> bool:
    """Apply the default resolution when the respondent never answered.

    Returns:
        True if the ticket was closed by this call.
    """
    if not is_response_overdue(ticket, now):
        return False
    ticket.resolution = policy.default_resolution
    ticket.status = DisputeStatus.CLOSED_AUTOMATICALLY
    ticket.moderator_notes = "Respondent did not answer before the deadline"
    ticket.updated_at = now
    return True


def is_mediation_overdue(ticket: DisputeTicket, now: datetime) -> bool:
    return (
        ticket.status is DisputeStatus.IN_MEDIATION
        and now >= ticket.deadline_for_next_action
    )


def escalate_overdue(ticket: DisputeTicket, now: datetime) -> bool:
    """Hand a stalled mediation to a moderator.

    Returns:
        True if the ticket was escalated by this call.
    """
    if not is_mediation_overdue(ticket, now):
        return False
    ticket.status = DisputeStatus.ESCALATED_TO_MODERATOR
    ticket.updated_at = now
    return True
