"""Shared enumerations and queue message structures."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Action(StrEnum):
    """Modification applied by a proof chain record."""

    CREATE = "create"
    DELETE = "delete"


class Platform(StrEnum):
    """Every platform the service knows about."""

    GITHUB = "github"
    NEXTID = "nextid"
    TWITTER = "twitter"
    TELEGRAM = "telegram"
    KEYBASE = "keybase"
    ETHEREUM = "ethereum"
    DISCORD = "discord"
    DAS = "dotbit"
    SOLANA = "solana"
    MINDS = "minds"
    DNS = "dns"
    ENS = "ens"
    STEAM = "steam"
    ACTIVITYPUB = "activitypub"


class QueueAction(StrEnum):
    """Kinds of work sent through the message queue."""

    REVALIDATE = "revalidate"
    ARWEAVE_UPLOAD = "arweave_upload"


@dataclass
class QueueMessage:
    """A message exchanged through the work queue.

    ``action`` stays a plain string when it names no known queue action.
    """

    action: QueueAction | str
    proof_id: int = 0
    persona: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": str(self.action),
            "proof_id": self.proof_id,
            "persona": self.persona,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def parse_queue_message(data: str | bytes | dict[str, Any]) -> QueueMessage:
    """Build a QueueMessage from a JSON document or an already decoded mapping."""
    if isinstance(data, (str, bytes, bytearray)):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise ValueError("queue message must be a JSON object")

    raw_action = data.get("action") or ""
    if not isinstance(raw_action, str):
        raise ValueError("queue message action must be a string")
    try:
        action: QueueAction | str = QueueAction(raw_action)
    except ValueError:
        action = raw_action

    proof_id = data.get("proof_id") or 0
    if not isinstance(proof_id, int) or isinstance(proof_id, bool):
        raise ValueError("queue message proof_id must be an integer")
    persona = data.get("persona") or ""
    if not isinstance(persona, str):
        raise ValueError("queue message persona must be a string")
    return QueueMessage(action=action, proof_id=proof_id, persona=persona)