"""HTTP API for querying proofs and proof chains."""

from __future__ import annotations

import argparse
import logging
import re
import sqlite3
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import Flask, current_app, jsonify, request

from .config import ConfigError, load_config
from .model import ACTIVATED_AT, ProofChainItem, ProofStore
from .runtime import build_info
from .signing import SignatureError, string_to_pubkey
from .util import time_to_timestamp_string

PER_PAGE = 20

_SORTABLE = frozenset(
    {
        "id",
        "last_arweave_id",
        "created_at",
        "last_checked_at",
        "proof_chain_id",
        "platform",
        "identity",
        "alt_id",
    }
)
_INTEGER = re.compile(r"[+-]?[0-9]+")
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_CORS_METHODS = "GET,POST,PUT,PATCH,DELETE,HEAD,OPTIONS"
_CORS_HEADERS = "Origin,Content-Length,Content-Type"

_log = logging.getLogger(__name__)


class RequestError(Exception):
    """A request that ends with an error status and message."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass
class Pagination:
    total: int = 0
    per: int = PER_PAGE
    current: int = 1
    next: int = 0

    @classmethod
    def for_page(cls, page: int) -> Pagination:
        """Pagination starting at ``page``; pages below one mean the first page."""
        return cls(current=page if page > 0 else 1)

    @property
    def offset(self) -> int:
        return self.per * (self.current - 1)

    def settle(self) -> None:
        """Set ``next`` when records remain beyond the current page."""
        if self.total > self.per * self.current:
            self.next = self.current + 1

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "per": self.per,
            "current": self.current,
            "next": self.next,
        }


def _unix(moment: datetime | None) -> str:
    return time_to_timestamp_string(moment) if moment is not None else "0"


def perform_proof_chain_query(
    store: ProofStore, public_key: str, page: int = 0
) -> tuple[list[ProofChainItem], Pagination]:
    """One page of the proof chains of ``public_key``."""
    pagination = Pagination.for_page(page)
    total, items = store.find_chains_by_persona(
        public_key, False, pagination.offset, pagination.per
    )
    pagination.total = total
    pagination.settle()
    return items, pagination


def _proof_query(
    store: ProofStore,
    platform: str,
    identities: list[str],
    page: int,
    exact: bool,
    sort_by: str,
    order: str,
) -> tuple[list[dict[str, Any]], Pagination, list[int]]:
    pagination = Pagination.for_page(page)
    results: list[dict[str, Any]] = []
    outdated: list[int] = []

    sort_key = sort_by.lower()
    order_by = sort_key if sort_key in _SORTABLE else "id"
    direction = order.lower() if order.lower() in ("asc", "desc") else "desc"
    query_column = order_by
    if sort_key == ACTIVATED_AT:
        order_by = "created_at"
        query_column = ACTIVATED_AT

    try:
        total, proofs = store.query_proofs(
            platform, identities, exact, query_column, direction,
            pagination.offset, pagination.per,
        )
    except (ValueError, sqlite3.Error):
        return results, pagination, outdated
    pagination.total = total
    if not proofs:
        return results, pagination, outdated

    outdated = [proof.id for proof in proofs if proof.is_outdated()]
    personas = list(dict.fromkeys(proof.persona for proof in proofs))

    for persona in personas:
        try:
            persona_proofs = store.find_all_proofs_by_persona(
                persona, f"{order_by} {direction}"
            )
        except (ValueError, sqlite3.Error):
            return results, pagination, outdated
        latest = store.find_latest_chain(persona)
        if latest is None:
            return results, pagination, outdated
        results.append(
            {
                "persona": persona,
                "avatar": persona,
                "last_arweave_id": latest.arweave_id,
                "activated_at": _unix(latest.created_at),
                "proofs": [
                    {
                        "platform": str(proof.platform),
                        "identity": proof.identity,
                        "alt_id": proof.alt_id,
                        "created_at": _unix(proof.created_at),
                        "last_checked_at": _unix(proof.last_checked_at),
                        "is_valid": proof.is_valid,
                        "invalid_reason": proof.invalid_reason,
                    }
                    for proof in persona_proofs
                ],
            }
        )

    pagination.settle()
    return results, pagination, outdated


def perform_proof_query(
    store: ProofStore,
    platform: str,
    identities: list[str],
    page: int = 0,
    exact: bool = False,
    sort_by: str = "",
    order: str = "",
) -> tuple[list[dict[str, Any]], Pagination]:
    """Search proofs and group them by persona; returns results and pagination."""
    results, pagination, _ = _proof_query(
        store, platform, identities, page, exact, sort_by, order
    )
    return results, pagination


def _int_arg(name: str) -> int:
    value = request.args.get(name)
    if not value:
        return 0
    if not _INTEGER.fullmatch(value):
        raise RequestError(400, "Param error")
    return int(value)


def _bool_arg(name: str) -> bool:
    value = request.args.get(name)
    if not value:
        return False
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise RequestError(400, "Param error")


def _run_revalidate(hook: Callable[[int], Any], proof_id: int) -> None:
    try:
        hook(proof_id)
    except Exception as exc:  # noqa: BLE001 - a background failure must not escape
        _log.warning("error revalidating proof %d: %s", proof_id, exc)


def _trigger_revalidate(proof_ids: Iterable[int]) -> None:
    hook = current_app.config.get("PROOF_REVALIDATE")
    if hook is None:
        return
    for proof_id in proof_ids:
        threading.Thread(target=_run_revalidate, args=(hook, proof_id), daemon=True).start()


def create_app(store: ProofStore) -> Flask:
    """Build the web application serving ``store``.

    ``app.config["PROOF_REVALIDATE"]`` may hold a callable taking a proof id; it is
    started in the background for each outdated proof met while answering queries.
    """
    app = Flask(__name__)
    app.config.setdefault("PROOF_REVALIDATE", None)
    app.config.setdefault("PROOF_PLATFORMS", [])

    @app.errorhandler(RequestError)
    def _request_error(exc: RequestError):
        return jsonify({"message": exc.message}), exc.status

    @app.before_request
    def _preflight():
        if (
            request.method == "OPTIONS"
            and request.headers.get("Origin")
            and request.headers.get("Access-Control-Request-Method")
        ):
            return app.make_response(("", 204))
        return None

    @app.after_request
    def _cors(response):
        if request.headers.get("Origin"):
            response.headers["Access-Control-Allow-Origin"] = "*"
            if request.method == "OPTIONS":
                response.headers["Access-Control-Allow-Methods"] = _CORS_METHODS
                response.headers["Access-Control-Allow-Headers"] = _CORS_HEADERS
                response.headers["Access-Control-Max-Age"] = "43200"
        return response

    @app.get("/healthz")
    def healthz():
        info = build_info()
        return jsonify(
            {
                "hello": "proof service",
                "runtime": str(info.runtime),
                "platforms": [str(p) for p in app.config["PROOF_PLATFORMS"]],
                "environment": info.environment,
                "revision": info.revision,
                "built_at": info.build_time,
            }
        )

    @app.get("/v1/proof/exists")
    def proof_exists():
        platform = request.args.get("platform", "")
        identity = request.args.get("identity", "")
        public_key = request.args.get("public_key", "")
        if not (platform and identity and public_key):
            raise RequestError(400, "Param missing")
        try:
            pubkey = string_to_pubkey(public_key)
        except SignatureError:
            raise RequestError(400, "Public key unmarshal error") from None
        try:
            found = store.find_proof(pubkey, platform, identity)
        except sqlite3.Error as exc:
            raise RequestError(500, f"Error in DB: {exc}") from exc
        if found is None:
            raise RequestError(404, f"Record not found for {platform}: {identity}")
        if found.is_outdated():
            _trigger_revalidate([found.id])
        return jsonify(
            {
                "created_at": _unix(found.created_at),
                "last_checked_at": _unix(found.last_checked_at),
                "is_valid": found.is_valid,
                "invalid_reason": found.invalid_reason,
            }
        )

    @app.get("/v1/proof")
    def proof_query():
        page = _int_arg("page")
        exact = _bool_arg("exact")
        raw_identities = request.args.getlist("identity")
        if not raw_identities:
            raise RequestError(400, "Param missing")
        identities = raw_identities[0].split(",")
        results, pagination, outdated = _proof_query(
            store,
            request.args.get("platform", ""),
            identities,
            page,
            exact,
            request.args.get("sort", ""),
            request.args.get("order", ""),
        )
        _trigger_revalidate(outdated)
        return jsonify({"pagination": pagination.to_dict(), "ids": results})

    @app.get("/v1/proofchain/changes")
    def proof_chain_changes():
        last_id = _int_arg("last_id")
        count = _int_arg("count")
        try:
            chains = store.chains_after(last_id, count)
        except sqlite3.Error as exc:
            raise RequestError(500, str(exc)) from exc
        links = []
        for chain in chains:
            entry = chain.to_item().to_dict()
            entry["avatar"] = chain.persona
            entry["id"] = chain.id
            links.append(entry)
        return jsonify({"links": links})

    @app.get("/v1/proofchain")
    def proof_chain_query():
        page = _int_arg("page")
        public_key = request.args.get("public_key", "")
        if not public_key:
            raise RequestError(400, "Param missing")
        try:
            items, pagination = perform_proof_chain_query(store, public_key, page)
        except sqlite3.Error as exc:
            raise RequestError(500, f"Error in DB: {exc}") from exc
        return jsonify(
            {
                "pagination": pagination.to_dict(),
                "proof_chain": [item.to_dict() for item in items],
            }
        )

    return app


def main(argv: list[str] | None = None) -> int:
    """Run the proof server."""
    parser = argparse.ArgumentParser(prog="proofserver", description="Proof service.")
    parser.add_argument("--config", default="./config/config.json", help="Config.json file path")
    parser.add_argument("--port", type=int, default=9800, help="Listen port")
    parser.add_argument("--database", default="proofs.sqlite3", help="SQLite database file")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")
    logging.basicConfig(level=logging.DEBUG)

    store = ProofStore(args.database)
    try:
        app = create_app(store)
        app.config["PROOF_CONFIG"] = config
        print(f"Server now running on 0.0.0.0:{args.port}")
        app.run(host="0.0.0.0", port=args.port)
    finally:
        store.close()
    return 0