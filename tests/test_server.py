from datetime import datetime, timezone

import pytest

from proofserver.model import ProofChain, ProofStore, marshal_persona, marshal_signature
from proofserver.server import (
    PER_PAGE,
    Pagination,
    create_app,
    main,
    perform_proof_chain_query,
    perform_proof_query,
)
from proofserver.signing import generate_keypair, string_to_pubkey
from proofserver.types import Action, Platform

PERSONA = "0x028c3cda474361179d653c41a62f6bbb07265d535121e19aedf660da2924d0b1e3"
ETH_ADDRESS = "0xd5f630652d4a8a5f95cda3738ce9f43fa26e764f"
ETH_PUBKEY = (
    "0x04ae5933a45605e7fff23cd010455911c1f0194479438859af5140d749937e53fd935d768efa"
    "9229ae8be3314631e945c56f915778ad4565b4efafcd13864e2fd7"
)


def _insert(store, key, platform, identity, location, signature,
            created_at=None, previous="", extra=None):
    chain = ProofChain(
        action=Action.CREATE,
        persona=marshal_persona(key),
        platform=platform,
        identity=identity,
        location=location,
        signature=marshal_signature(signature),
        extra=extra or {},
        created_at=created_at,
    )
    store.create_chain(chain, previous)
    store.apply(chain)
    return chain


def insert_proof(store):
    pubkey = string_to_pubkey(PERSONA)
    _insert(store, pubkey, Platform.TWITTER, "yeiwb", "1469221200140574721", b"\x01",
            created_at=datetime(1970, 1, 1, tzinfo=timezone.utc))
    _insert(store, pubkey, Platform.ETHEREUM, ETH_ADDRESS, "", b"\x02",
            previous="AQ==", extra={"ethereum_pubkey": ETH_PUBKEY})


def insert_proof_exact(store):
    pubkey = string_to_pubkey(PERSONA)
    other, _ = generate_keypair()
    _insert(store, pubkey, Platform.TWITTER, "yeiwb", "1469221200140574721", b"\x01",
            created_at=datetime(1970, 1, 1, tzinfo=timezone.utc))
    _insert(store, pubkey, Platform.ETHEREUM, ETH_ADDRESS, "", b"\x02",
            previous="AQ==", extra={"ethereum_pubkey": ETH_PUBKEY},
            created_at=datetime(1971, 1, 1, tzinfo=timezone.utc))
    _insert(store, other, Platform.TWITTER, "yeiwb_fuzzy", "1469221200140574722", b"\x03",
            created_at=datetime(2022, 1, 1, tzinfo=timezone.utc))


def insert_eth_proof(store, eth_pubkey):
    persona, _ = generate_keypair()
    _insert(store, persona, Platform.ETHEREUM, eth_pubkey.to_address().lower(), "", b"\x01")


@pytest.fixture
def store():
    with ProofStore() as s:
        yield s


@pytest.fixture
def client(store):
    return create_app(store).test_client()


# Proof chain


def test_proof_chain_success(client, store):
    insert_proof(store)
    resp = client.get(f"/v1/proofchain?public_key={PERSONA}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert len(body["proof_chain"]) == 2
    assert body["proof_chain"][0]["signature"] == "AQ=="
    assert body["proof_chain"][0]["created_at"] == "0"


def test_proof_chain_empty_result(client):
    resp = client.get("/v1/proofchain?public_key=aaa")
    assert resp.status_code == 200
    assert resp.get_json()["proof_chain"] == []


def test_proof_chain_pagination(client, store):
    for _ in range(22):
        insert_proof(store)
    url = f"/v1/proofchain?public_key={PERSONA}"

    page1 = client.get(url).get_json()
    assert page1["pagination"]["total"] == 44
    assert page1["pagination"]["current"] == 1
    assert page1["pagination"]["next"] == 2
    assert len(page1["proof_chain"]) == PER_PAGE

    page3 = client.get(url + "&page=3").get_json()
    assert page3["pagination"]["current"] == 3
    assert page3["pagination"]["next"] == 0
    assert len(page3["proof_chain"]) == 4

    page4 = client.get(url + "&page=4").get_json()
    assert page4["pagination"]["current"] == 4
    assert page4["pagination"]["next"] == 0
    assert page4["proof_chain"] == []


def test_proof_chain_missing_key(client):
    resp = client.get("/v1/proofchain")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Param missing"


def test_proof_chain_bad_page(client):
    resp = client.get(f"/v1/proofchain?public_key={PERSONA}&page=abc")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Param error"


def test_perform_proof_chain_query_defaults_to_first_page(store):
    insert_proof(store)
    items, pagination = perform_proof_chain_query(store, PERSONA, 0)
    assert pagination.to_dict() == {"total": 2, "per": PER_PAGE, "current": 1, "next": 0}
    assert [item.identity for item in items] == ["yeiwb", ETH_ADDRESS]


def test_pagination_to_dict():
    assert Pagination(total=5, per=20, current=2, next=0).to_dict() == {
        "total": 5, "per": 20, "current": 2, "next": 0,
    }


# Proof chain changes


def test_proof_chain_changes(client, store):
    insert_proof(store)
    links = client.get("/v1/proofchain/changes").get_json()["links"]
    assert len(links) == 2
    assert links[0]["id"] < links[1]["id"]
    assert links[0]["avatar"] == PERSONA
    assert links[1]["platform"] == "ethereum"

    after = client.get(f"/v1/proofchain/changes?last_id={links[0]['id']}").get_json()["links"]
    assert [link["id"] for link in after] == [links[1]["id"]]

    limited = client.get("/v1/proofchain/changes?count=1").get_json()["links"]
    assert len(limited) == 1


# Proof exists


def test_proof_exists_smoke(client):
    resp = client.get(f"/v1/proof/exists?platform=twitter&identity=test&public_key={PERSONA}")
    assert resp.status_code == 404
    assert "not found" in resp.get_json()["message"]


def test_proof_exists_success(client, store):
    insert_proof(store)
    resp = client.get(f"/v1/proof/exists?platform=twitter&identity=yeiwb&public_key={PERSONA}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["is_valid"] is True
    assert body["invalid_reason"] == ""


def test_proof_exists_missing_param(client):
    resp = client.get("/v1/proof/exists?platform=twitter&identity=yeiwb")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Param missing"


def test_proof_exists_bad_key(client):
    resp = client.get("/v1/proof/exists?platform=twitter&identity=yeiwb&public_key=0xzz")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Public key unmarshal error"


# Proof query


def test_proof_query_smoke(client):
    body = client.get("/v1/proof?platform=twitter&identity=yeiwb").get_json()
    assert body["ids"] == []


def test_proof_query_missing_identity(client):
    resp = client.get("/v1/proof?platform=twitter")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Param missing"


def test_proof_query_success(client, store):
    insert_proof(store)
    body = client.get("/v1/proof?platform=twitter&identity=yeiwb").get_json()
    assert len(body["ids"]) == 1
    found = body["ids"][0]
    assert found["persona"] == PERSONA
    assert found["avatar"] == PERSONA
    assert len(found["proofs"]) == 2
    assert body["pagination"] == {"total": 1, "per": PER_PAGE, "current": 1, "next": 0}
    assert found["activated_at"] not in ("0", "")

    partial = client.get("/v1/proof?platform=twitter&identity=eiw").get_json()
    assert len(partial["ids"]) == 1
    assert partial["ids"][0]["persona"] == PERSONA
    assert len(partial["ids"][0]["proofs"]) == 2

    empty = client.get("/v1/proof?platform=keybase&identity=yeiwb").get_json()
    assert empty["ids"] == []


def test_proof_query_all_platforms(client, store):
    insert_proof(store)
    body = client.get("/v1/proof?identity=eiwb").get_json()
    assert len(body["ids"]) == 1
    assert body["ids"][0]["persona"] == PERSONA
    assert len(body["ids"][0]["proofs"]) == 2


def test_proof_query_multiple_identity_fuzzy(client, store):
    insert_proof(store)
    body = client.get("/v1/proof?identity=eiw,0xd5f630652d4").get_json()
    assert len(body["ids"]) == 1
    assert len(body["ids"][0]["proofs"]) == 2


def test_proof_query_persona(client, store):
    insert_proof(store)
    body = client.get(f"/v1/proof?identity={PERSONA}&platform=nextid").get_json()
    assert len(body["ids"]) == 1
    assert len(body["ids"][0]["proofs"]) == 2


def test_proof_query_pagination(client, store):
    eth_pubkey, _ = generate_keypair()
    for _ in range(45):
        insert_eth_proof(store, eth_pubkey)
    url = f"/v1/proof?identity={eth_pubkey.to_address()}&platform=ethereum"

    page1 = client.get(url).get_json()
    assert page1["pagination"]["total"] == 45
    assert page1["pagination"]["current"] == 1
    assert page1["pagination"]["next"] == 2
    assert len(page1["ids"]) == PER_PAGE

    page3 = client.get(url + "&page=3").get_json()
    assert page3["pagination"]["current"] == 3
    assert page3["pagination"]["next"] == 0
    assert len(page3["ids"]) == 5

    page4 = client.get(url + "&page=4").get_json()
    assert page4["pagination"]["current"] == 4
    assert page4["pagination"]["next"] == 0
    assert page4["ids"] == []


def test_proof_query_exact_match(client, store):
    insert_proof_exact(store)
    fuzzy = client.get("/v1/proof?platform=twitter&identity=yeiwb").get_json()
    assert len(fuzzy["ids"]) == 2
    exact = client.get("/v1/proof?platform=twitter&identity=yeiwb&exact=true").get_json()
    assert len(exact["ids"]) == 1


def test_proof_query_bad_exact(client):
    resp = client.get("/v1/proof?identity=yeiwb&exact=maybe")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Param error"


def test_proof_query_sort(client, store):
    insert_proof(store)
    asc = client.get(
        f"/v1/proof?sort=platform&order=asc&identity={PERSONA}&platform=nextid"
    ).get_json()
    assert asc["ids"][0]["proofs"][0]["platform"] == "ethereum"

    desc = client.get(
        f"/v1/proof?sort=platform&order=desc&identity={PERSONA}&platform=nextid"
    ).get_json()
    assert desc["ids"][0]["proofs"][0]["platform"] == "twitter"


def test_proof_query_sort_activated_at(client, store):
    insert_proof_exact(store)
    asc = client.get(
        "/v1/proof?sort=activated_at&order=asc&identity=yeiwb&platform=twitter"
    ).get_json()
    assert int(asc["ids"][0]["activated_at"]) < int(asc["ids"][1]["activated_at"])

    desc = client.get(
        "/v1/proof?sort=activated_at&order=desc&identity=yeiwb&platform=twitter"
    ).get_json()
    assert int(desc["ids"][0]["activated_at"]) > int(desc["ids"][1]["activated_at"])


def test_perform_proof_query_direct(store):
    insert_proof(store)
    results, pagination = perform_proof_query(store, "twitter", ["yeiwb"], 0, True, "", "")
    assert [r["persona"] for r in results] == [PERSONA]
    assert pagination.total == 1
    assert pagination.current == 1


# Misc


def test_healthz(client):
    body = client.get("/healthz").get_json()
    assert body["hello"] == "proof service"
    assert body["platforms"] == []


def test_cors_header(client):
    resp = client.get("/healthz", headers={"Origin": "https://example.com"})
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_cors_preflight(client):
    resp = client.options(
        "/v1/proof",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
    )
    assert resp.status_code == 204
    assert "GET" in resp.headers["Access-Control-Allow-Methods"]


def test_main_missing_config(tmp_path):
    with pytest.raises(SystemExit) as info:
        main(["--config", str(tmp_path / "missing.json")])
    assert info.value.code == 1