"""Signaling relay between paired sessions.

Handshake payloads are never decoded: the relay only checks that the sender
is paired and forwards the envelope to its partner with a ``from`` field.
"""

import logging
from typing import Any

from vocaline.metrics import MetricsCollector
from vocaline.protocol import PartnerMuteStatusMessage, relay_envelope, to_envelope
from vocaline.session import SessionRecord
from vocaline.stats import Sender

logger = logging.getLogger(__name__)


class SignalRelay:
    """Forwards handshake and mute envelopes to the sender's current partner.

    Delivery is best-effort: if the partner is not writable the envelope is
    dropped. Stale handshake data is useless once the pairing changes, so
    nothing is retried or buffered.
    """

    def __init__(self, send: Sender, metrics: MetricsCollector) -> None:
        self._send = send
        self._metrics = metrics

    def relay(self, sender: SessionRecord, message_type: str, payload: dict[str, Any]) -> bool:
        """Forward a handshake envelope (offer/answer/candidate) verbatim.

        Args:
            sender: Session that sent the envelope
            message_type: Envelope type, echoed unchanged
            payload: Opaque handshake data

        Returns:
            True if the envelope was handed to the partner's connection
        """
        partner_id = sender.partner if sender.is_paired else None
        if partner_id is None:
            logger.debug(
                "Relay ignored, sender not paired",
                extra={"session_id": sender.id, "type": message_type, "state": sender.state.value},
            )
            return False

        return self._forward(sender, partner_id, relay_envelope(message_type, payload, sender.id))

    def relay_mute(self, sender: SessionRecord, is_muted: bool) -> bool:
        """Tell the sender's partner about a microphone mute change."""
        partner_id = sender.partner if sender.is_paired else None
        if partner_id is None:
            logger.debug(
                "Mute status ignored, sender not paired",
                extra={"session_id": sender.id, "state": sender.state.value},
            )
            return False

        message = PartnerMuteStatusMessage(username=sender.display_name, is_muted=is_muted)
        return self._forward(sender, partner_id, to_envelope(message))

    def _forward(self, sender: SessionRecord, partner_id: str, envelope: dict[str, Any]) -> bool:
        delivered = self._send(partner_id, envelope)
        if delivered:
            self._metrics.record_relay()
            logger.debug(
                "Envelope relayed",
                extra={
                    "session_id": sender.id,
                    "partner_id": partner_id,
                    "type": envelope["type"],
                },
            )
        return delivered
