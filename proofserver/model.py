"""Proof and proof chain records and their SQLite-backed store."""

from __future__ import annotations

import base64
import binascii
import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any, Iterable, TypeVar

from .signing import PublicKey, SignatureError, compressed_pubkey_hex, string_to_pubkey
from .types import Action, Platform
from .util import time_to_timestamp_string

# Time after which a proof is considered expired and should be revalidated.
EXPIRED_IN = timedelta(days=3)

# Columns of the proof table that results may be ordered by.
PROOF_ORDER_COLUMNS = frozenset(
    {"id", "created_at", "last_checked_at", "proof_chain_id", "platform", "identity", "alt_id"}
)
ACTIVATED_AT = "activated_at"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_E = TypeVar("_E", bound=StrEnum)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS proof_chains (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at INTEGER,
    action TEXT NOT NULL,
    persona TEXT NOT NULL,
    identity TEXT NOT NULL,
    alt_id TEXT NOT NULL DEFAULT '',
    platform TEXT NOT NULL,
    location TEXT NOT NULL,
    signature TEXT NOT NULL,
    signature_payload TEXT NOT NULL DEFAULT '',
    extra TEXT NOT NULL DEFAULT '{}',
    uuid TEXT NOT NULL DEFAULT '',
    arweave_id TEXT NOT NULL DEFAULT '',
    previous_id INTEGER REFERENCES proof_chains(id)
);
CREATE INDEX IF NOT EXISTS idx_proof_chains_persona ON proof_chains(persona);
CREATE INDEX IF NOT EXISTS idx_proof_chains_signature ON proof_chains(signature);
CREATE INDEX IF NOT EXISTS idx_proof_chains_uuid ON proof_chains(uuid);
CREATE INDEX IF NOT EXISTS idx_proof_chains_previous_id ON proof_chains(previous_id);

CREATE TABLE IF NOT EXISTS proof (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at INTEGER,
    last_checked_at INTEGER,
    is_valid INTEGER NOT NULL DEFAULT 0,
    invalid_reason TEXT NOT NULL DEFAULT '',
    proof_chain_id INTEGER,
    persona TEXT NOT NULL,
    platform TEXT NOT NULL,
    identity TEXT NOT NULL,
    alt_id TEXT NOT NULL DEFAULT '',
    location TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_proof_persona ON proof(persona);
CREATE INDEX IF NOT EXISTS idx_proof_platform ON proof(platform);
CREATE INDEX IF NOT EXISTS idx_proof_identity ON proof(identity);
CREATE INDEX IF NOT EXISTS idx_proof_alt_id ON proof(alt_id);
CREATE INDEX IF NOT EXISTS idx_proof_proof_chain_id ON proof(proof_chain_id);
"""


class RecordNotFound(LookupError):
    """Raised when a required record does not exist."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_micros(moment: datetime | None) -> int | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(microseconds=1)


def _from_micros(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + timedelta(microseconds=value)


def _coerce(cls: type[_E], value: str) -> _E | str:
    try:
        return cls(value)
    except ValueError:
        return value


def marshal_persona(persona: Any) -> str:
    """Storage form of a persona: ``0x`` plus the compressed public key hex.

    Accepts a PublicKey or a hex string; anything unparseable gives ``""``.
    """
    if isinstance(persona, PublicKey):
        return "0x" + compressed_pubkey_hex(persona)
    if isinstance(persona, str):
        try:
            return marshal_persona(string_to_pubkey(persona))
        except SignatureError:
            return ""
    return ""


def marshal_signature(signature: bytes) -> str:
    """Standard base64 text of a signature."""
    return base64.b64encode(bytes(signature)).decode("ascii")


@dataclass
class Proof:
    """Current state of one persona-to-identity binding."""

    persona: str
    platform: Platform | str
    identity: str
    location: str = ""
    alt_id: str = ""
    proof_chain_id: int | None = None
    is_valid: bool = False
    invalid_reason: str = ""
    created_at: datetime | None = None
    last_checked_at: datetime | None = None
    id: int = 0

    def is_outdated(self, now: datetime | None = None) -> bool:
        """True when the last check is older than EXPIRED_IN."""
        if self.last_checked_at is None:
            return True
        now = now or _now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self.last_checked_at + EXPIRED_IN < now


@dataclass
class ProofChainItem:
    """Outward representation of a proof chain record."""

    action: Action | str
    platform: Platform | str
    identity: str
    alt_id: str
    proof_location: str
    created_at: str
    signature: str
    signature_payload: str
    uuid: str
    extra: dict[str, Any]
    arweave_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": str(self.action),
            "platform": str(self.platform),
            "identity": self.identity,
            "alt_id": self.alt_id,
            "proof_location": self.proof_location,
            "created_at": self.created_at,
            "signature": self.signature,
            "signature_payload": self.signature_payload,
            "uuid": self.uuid,
            "extra": dict(self.extra),
            "arweave_id": self.arweave_id,
        }


@dataclass
class ProofChain:
    """One entry of a persona's proof modification log."""

    action: Action | str
    persona: str
    platform: Platform | str
    identity: str
    location: str = ""
    signature: str = ""
    alt_id: str = ""
    signature_payload: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    uuid: str = ""
    arweave_id: str = ""
    created_at: datetime | None = None
    previous_id: int | None = None
    previous: ProofChain | None = None
    id: int = 0

    def pubkey(self) -> PublicKey | None:
        try:
            return string_to_pubkey(self.persona)
        except SignatureError:
            return None

    def signature_bytes(self) -> bytes | None:
        try:
            return base64.b64decode(self.signature, validate=True)
        except (binascii.Error, ValueError):
            return None

    def to_item(self) -> ProofChainItem:
        created = time_to_timestamp_string(self.created_at) if self.created_at else "0"
        return ProofChainItem(
            action=self.action,
            platform=self.platform,
            identity=self.identity,
            alt_id=self.alt_id,
            proof_location=self.location,
            created_at=created,
            signature=self.signature,
            signature_payload=self.signature_payload,
            uuid=self.uuid,
            extra=dict(self.extra),
            arweave_id=self.arweave_id,
        )


def _chain_from_row(row: sqlite3.Row) -> ProofChain:
    try:
        extra = json.loads(row["extra"]) if row["extra"] else {}
    except ValueError:
        extra = {}
    return ProofChain(
        id=row["id"],
        created_at=_from_micros(row["created_at"]),
        action=_coerce(Action, row["action"]),
        persona=row["persona"],
        identity=row["identity"],
        alt_id=row["alt_id"],
        platform=_coerce(Platform, row["platform"]),
        location=row["location"],
        signature=row["signature"],
        signature_payload=row["signature_payload"],
        extra=extra if isinstance(extra, dict) else {},
        uuid=row["uuid"],
        arweave_id=row["arweave_id"],
        previous_id=row["previous_id"],
    )


def _proof_from_row(row: sqlite3.Row) -> Proof:
    return Proof(
        id=row["id"],
        created_at=_from_micros(row["created_at"]),
        last_checked_at=_from_micros(row["last_checked_at"]),
        is_valid=bool(row["is_valid"]),
        invalid_reason=row["invalid_reason"],
        proof_chain_id=row["proof_chain_id"],
        persona=row["persona"],
        platform=_coerce(Platform, row["platform"]),
        identity=row["identity"],
        alt_id=row["alt_id"],
        location=row["location"],
    )


def _parse_order(order_by: str) -> str:
    parts = order_by.split()
    if not 1 <= len(parts) <= 2:
        raise ValueError(f"invalid ordering: {order_by!r}")
    column = parts[0].lower()
    direction = parts[1].lower() if len(parts) == 2 else "asc"
    if column not in PROOF_ORDER_COLUMNS or direction not in ("asc", "desc"):
        raise ValueError(f"invalid ordering: {order_by!r}")
    return f"proof.{column} {direction}"


def _placeholders(values: Iterable[Any]) -> str:
    return ",".join("?" for _ in values)


class ProofStore:
    """Persistent storage of proofs and proof chains in an SQLite database."""

    def __init__(self, path: str | Path = ":memory:"):
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA case_sensitive_like = ON")
        self._conn.executescript(_SCHEMA)
        self._lock = threading.RLock()

    def __enter__(self) -> ProofStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Proof chains

    def create_chain(self, chain: ProofChain, previous_signature: str = "") -> ProofChain:
        """Insert ``chain``, linking it to the chain signed ``previous_signature`` if given."""
        with self._lock:
            if previous_signature:
                previous = self.find_chain_by_signature(previous_signature)
                chain.previous = previous
                chain.previous_id = previous.id
            if chain.created_at is None:
                chain.created_at = _now()
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO proof_chains (created_at, action, persona, identity, alt_id,"
                    " platform, location, signature, signature_payload, extra, uuid,"
                    " arweave_id, previous_id) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        _to_micros(chain.created_at),
                        str(chain.action),
                        chain.persona,
                        chain.identity,
                        chain.alt_id,
                        str(chain.platform),
                        chain.location,
                        chain.signature,
                        chain.signature_payload,
                        json.dumps(chain.extra or {}),
                        chain.uuid,
                        chain.arweave_id,
                        chain.previous_id,
                    ),
                )
            chain.id = cursor.lastrowid
            return chain

    def apply(self, chain: ProofChain) -> None:
        """Apply the modification recorded in ``chain`` to the proof table."""
        match chain.action:
            case Action.CREATE:
                self._create_proof(chain)
            case Action.DELETE:
                self._delete_proof(chain)
            case _:
                raise ValueError(f"unknown action: {chain.action}")

    @staticmethod
    def _conditions(chain: ProofChain) -> tuple[str, list[str]]:
        pairs = [
            ("persona", chain.persona),
            ("platform", str(chain.platform)),
            ("identity", chain.identity),
            ("location", chain.location),
        ]
        used = [(col, val) for col, val in pairs if val]
        where = " AND ".join(f"{col} = ?" for col, _ in used)
        return where, [val for _, val in used]

    def _create_proof(self, chain: ProofChain) -> None:
        where, params = self._conditions(chain)
        with self._lock, self._conn:
            found = self._conn.execute(
                f"SELECT id FROM proof WHERE {where or '1 = 1'} ORDER BY id LIMIT 1", params
            ).fetchone()
            if found is not None:
                return
            now = _to_micros(_now())
            self._conn.execute(
                "INSERT INTO proof (created_at, last_checked_at, is_valid, invalid_reason,"
                " proof_chain_id, persona, platform, identity, alt_id, location)"
                " VALUES (?,?,?,?,?,?,?,?,?,?)",
                (
                    now, now, 1, "", chain.id, chain.persona, str(chain.platform),
                    chain.identity, chain.alt_id, chain.location,
                ),
            )

    def _delete_proof(self, chain: ProofChain) -> None:
        where, params = self._conditions(chain)
        if not where:
            raise ValueError("missing conditions for proof deletion")
        with self._lock, self._conn:
            self._conn.execute(f"DELETE FROM proof WHERE {where}", params)

    def find_latest_chain(self, persona: Any) -> ProofChain | None:
        """Most recent chain of ``persona``, or None when it has none."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM proof_chains WHERE persona = ? ORDER BY id DESC LIMIT 1",
                (marshal_persona(persona),),
            ).fetchone()
        return None if row is None else _chain_from_row(row)

    def find_chain_by_signature(self, signature: str) -> ProofChain:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM proof_chains WHERE signature = ? LIMIT 1", (signature,)
            ).fetchone()
        if row is None:
            raise RecordNotFound("error finding previous proof chain: record not found")
        return _chain_from_row(row)

    def find_chains_by_persona(
        self, persona: str, all_data: bool = False, offset: int = 0, limit: int = 20
    ) -> tuple[int, list[ProofChainItem]]:
        """Total count of ``persona``'s chains and one page (or all) of them."""
        with self._lock:
            total = self._conn.execute(
                "SELECT COUNT(*) FROM proof_chains WHERE persona = ?", (persona,)
            ).fetchone()[0]
            if all_data:
                rows = self._conn.execute(
                    "SELECT * FROM proof_chains WHERE persona = ? ORDER BY id", (persona,)
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM proof_chains WHERE persona = ? ORDER BY id LIMIT ? OFFSET ?",
                    (persona, limit, offset),
                ).fetchall()
        return total, [_chain_from_row(row).to_item() for row in rows]

    def chains_after(self, last_id: int = 0, count: int = 10) -> list[ProofChain]:
        """Chains with id above ``last_id`` in id order; ``count`` is clamped to 1..100."""
        if count <= 0:
            count = 10
        count = min(count, 100)
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM proof_chains WHERE id > ? ORDER BY id ASC LIMIT ?",
                (last_id, count),
            ).fetchall()
        return [_chain_from_row(row) for row in rows]

    # Proofs

    def find_proof(self, persona: Any, platform: str, identity: str) -> Proof | None:
        """Proof of ``persona`` on ``platform`` whose identity or alt id matches."""
        lowered = identity.lower()
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM proof WHERE persona = ? AND platform = ?"
                " AND (identity = ? OR alt_id = ?) ORDER BY id LIMIT 1",
                (marshal_persona(persona), str(platform), lowered, lowered),
            ).fetchone()
        return None if row is None else _proof_from_row(row)

    def find_all_proofs_by_persona(self, persona: Any, order_by: str = "id desc") -> list[Proof]:
        ordering = _parse_order(order_by)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM proof WHERE persona = ? ORDER BY {ordering}, proof.id",
                (marshal_persona(persona),),
            ).fetchall()
        return [_proof_from_row(row) for row in rows]

    def query_proofs(
        self,
        platform: str,
        identities: list[str],
        exact: bool = False,
        order_by: str = "id",
        order: str = "desc",
        offset: int = 0,
        limit: int | None = 20,
    ) -> tuple[int, list[Proof]]:
        """Search proofs; returns the total match count and one page of proofs.

        For the ``nextid`` platform the identities are personas and the total is the
        size of the page. Ordering by ``activated_at`` joins each proof with every
        chain of its persona, ordered by the chain creation time.
        """
        if not identities:
            raise ValueError("identities must not be empty")
        column = order_by.lower()
        direction = order.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"invalid order: {order!r}")
        if column == ACTIVATED_AT:
            source = "proof INNER JOIN proof_chains ON proof.persona = proof_chains.persona"
            ordering = f"proof_chains.created_at {direction}"
        elif column in PROOF_ORDER_COLUMNS:
            source = "proof"
            ordering = f"proof.{column} {direction}"
        else:
            raise ValueError(f"invalid sort column: {order_by!r}")
        page = f" ORDER BY {ordering}, proof.id LIMIT ? OFFSET ?"
        page_params = [-1 if limit is None else limit, offset]

        if str(platform) == Platform.NEXTID:
            where = f"proof.persona IN ({_placeholders(identities)})"
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT proof.* FROM {source} WHERE {where}{page}",
                    [*identities, *page_params],
                ).fetchall()
            return len(rows), [_proof_from_row(row) for row in rows]

        clauses: list[str] = []
        params: list[Any] = []
        for identity in identities:
            value = identity.lower()
            if exact:
                clauses.append("(proof.identity = ? OR proof.alt_id = ?)")
                params += [value, value]
            else:
                clauses.append("(proof.identity LIKE ? OR proof.alt_id LIKE ?)")
                params += [f"%{value}%", f"%{value}%"]
        where = " OR ".join(clauses)
        if platform:
            where = f"proof.platform = ? AND ({where})"
            params.insert(0, str(platform))

        with self._lock:
            total = self._conn.execute(
                f"SELECT COUNT(*) FROM {source} WHERE {where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT proof.* FROM {source} WHERE {where}{page}", [*params, *page_params]
            ).fetchall()
        return total, [_proof_from_row(row) for row in rows]

    def count_proofs(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM proof").fetchone()[0]