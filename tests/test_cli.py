import base64
import io
import json
import sys
from urllib.parse import parse_qs, urlsplit

import pytest
import responses

from proofserver import base1024, cli
from proofserver.signing import (
    compressed_pubkey_hex,
    generate_keypair,
    validate_personal_signature,
)

HOST = "http://localhost:9800"
CONFIG = {
    "server": {
        "hostname": HOST,
        "generate_path": "/v1/proof/payload",
        "upload_path": "/v1/proof",
        "query_path": "/v1/proof",
    }
}


def test_pretty_string_indents_with_four_spaces():
    assert cli.pretty_string('{"a":1}') == '{\n    "a": 1\n}'


def test_pretty_string_rejects_invalid_json():
    with pytest.raises(ValueError):
        cli.pretty_string("not json")


def test_urls_join_hostname_and_paths():
    assert cli.payload_url(CONFIG) == HOST + "/v1/proof/payload"
    assert cli.upload_url(CONFIG) == HOST + "/v1/proof"
    assert cli.query_url(CONFIG) == HOST + "/v1/proof"


def test_render_post_contents_replaces_placeholder():
    sig = b"\x01\x02\x03"
    rendered = cli.render_post_contents(
        "twitter", "0xabc", {"default": "Verifying. Sig: %SIG_BASE64%"}, sig
    )
    b64_text, b1024_text = rendered["default"]
    assert b64_text == "Verifying. Sig: " + base64.b64encode(sig).decode()
    assert b1024_text == "Verifying. Sig: " + base1024.encode(sig)


def test_render_post_contents_dotbit_uses_persona_prefix():
    sig = b"\x09\x08"
    rendered = cli.render_post_contents("dotbit", "0xabc", {"default": "ignored"}, sig)
    b64_text, b1024_text = rendered["default"]
    assert b64_text == "0xabc:" + base64.b64encode(sig).decode()
    assert base1024.decode(b1024_text.split(":", 1)[1]) == sig


def test_build_upload_request_lowercases_identity_and_encodes():
    body = cli.build_upload_request(
        "create", "twitter", "YeIwB", "0xabc", "1647503071", "u-1", "123", b"\x05\x06", b"\x07"
    )
    assert body["identity"] == "yeiwb"
    assert base64.b64decode(body["extra"]["signature"]) == b"\x05\x06"
    assert body["extra"]["wallet_signature"] == ""
    assert body["proof_location"] == "123"


def test_build_upload_request_ethereum_keeps_wallet_signature():
    body = cli.build_upload_request(
        "create", "ethereum", "0xAB", "0xabc", "1", "u", "", b"\x01", b"\x02\x03"
    )
    assert base64.b64decode(body["extra"]["wallet_signature"]) == b"\x02\x03"


def test_query_proof_pages_and_prints():
    stdin = io.StringIO("twitter\nyeiwb\n1\n1\n3\n")
    stdout = io.StringIO()
    with responses.RequestsMock() as rsps:
        rsps.get(HOST + "/v1/proof", json={"ids": []})
        assert cli.query_proof(CONFIG, stdin, stdout) == 0
        calls = list(rsps.calls)
    assert len(calls) == 2
    first = parse_qs(urlsplit(calls[0].request.url).query)
    second = parse_qs(urlsplit(calls[1].request.url).query)
    assert first["identity"] == ["yeiwb"]
    assert first["page"] == ["1"]
    assert second["page"] == ["2"]
    assert cli.pretty_string('{"ids": []}') in stdout.getvalue()


def test_query_proof_unknown_step_raises():
    with responses.RequestsMock() as rsps:
        rsps.get(HOST + "/v1/proof", json={})
        with pytest.raises(ValueError):
            cli.query_proof(CONFIG, io.StringIO("twitter\nyeiwb\n1\n9\n"), io.StringIO())


def _key_hex(private_key):
    return private_key.secret.to_bytes(32, "big").hex()


def test_generate_payload_signs_and_uploads():
    pubkey, private_key = generate_keypair()
    sign_payload = '{"action":"create","platform":"twitter"}'
    stdin = io.StringIO(f"{_key_hex(private_key)}\ntwitter\nyeiwb\ncreate\n1\n1504363098328924163\n")
    stdout = io.StringIO()
    with responses.RequestsMock() as rsps:
        rsps.post(
            HOST + "/v1/proof/payload",
            json={
                "post_content": {"default": "Sig: %SIG_BASE64%"},
                "sign_payload": sign_payload,
                "uuid": "c6fa1483-1bad-4f07-b661-678b191ab4b3",
                "created_at": "1647503071",
            },
        )
        rsps.post(HOST + "/v1/proof", status=201, json={})
        assert cli.generate_payload(CONFIG, stdin, stdout) == 0
        calls = list(rsps.calls)

    assert "Upload succeed!!" in stdout.getvalue()

    payload_req = json.loads(calls[0].request.body)
    assert payload_req["public_key"] == "0x" + compressed_pubkey_hex(pubkey)

    upload = json.loads(calls[1].request.body)
    assert upload["proof_location"] == "1504363098328924163"
    assert upload["uuid"] == "c6fa1483-1bad-4f07-b661-678b191ab4b3"
    signature = base64.b64decode(upload["extra"]["signature"])
    validate_personal_signature(sign_payload, signature, pubkey)
    assert "Sig: " + upload["extra"]["signature"] in stdout.getvalue()


def test_generate_payload_stops_without_upload():
    _, private_key = generate_keypair()
    stdout = io.StringIO()
    stdin = io.StringIO(f"{_key_hex(private_key)}\ntwitter\nyeiwb\ndelete\n2\n")
    with responses.RequestsMock() as rsps:
        rsps.post(
            HOST + "/v1/proof/payload",
            json={"post_content": {}, "sign_payload": "x", "uuid": "u", "created_at": "1"},
        )
        assert cli.generate_payload(CONFIG, stdin, stdout) == 0
        call_count = len(rsps.calls)
    assert "no need to continue..." in stdout.getvalue()
    assert call_count == 1


def test_generate_payload_fails_on_bad_status():
    _, private_key = generate_keypair()
    stdin = io.StringIO(f"{_key_hex(private_key)}\ntwitter\nyeiwb\ncreate\n")
    with responses.RequestsMock() as rsps:
        rsps.post(HOST + "/v1/proof/payload", status=500, json={"message": "boom"})
        with pytest.raises(RuntimeError):
            cli.generate_payload(CONFIG, stdin, io.StringIO())


def test_main_unknown_operation(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("9\n"))
    assert cli.main([]) == 1
    assert "Unknow Operation: 9" in capsys.readouterr().out