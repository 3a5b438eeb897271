"""Interactive command line client for querying and uploading proofs."""

from __future__ import annotations

import argparse
import base64
import json
import sys
from collections.abc import Mapping
from typing import Any, TextIO

import requests

from . import base1024
from .config import ConfigError, load_cli_config
from .signing import (
    compressed_pubkey_hex,
    private_key_from_hex,
    sign_personal,
)
from .types import Action, Platform

SIGNATURE_PLACEHOLDER = "%SIG_BASE64%"

OPERATION_QUERY = "1"
OPERATION_GENERATE = "2"

_SETTING_NAMES = {
    "hostname": ("hostname", "server_url"),
    "generate_path": ("generate_path", "payload_path"),
    "upload_path": ("upload_path",),
    "query_path": ("query_path",),
}


def _setting(config: Any, key: str) -> str:
    """Read ``server.<key>`` from a nested mapping or a configuration object."""
    names = _SETTING_NAMES.get(key, (key,))
    if isinstance(config, Mapping):
        server = config.get("server", config)
        for name in names:
            value = server.get(name) if isinstance(server, Mapping) else None
            if value:
                return str(value)
        return ""
    server = getattr(config, "server", config)
    for name in names:
        value = getattr(server, name, None)
        if value:
            return str(value)
    return ""


def payload_url(config: Any) -> str:
    return _setting(config, "hostname") + _setting(config, "generate_path")


def upload_url(config: Any) -> str:
    return _setting(config, "hostname") + _setting(config, "upload_path")


def query_url(config: Any) -> str:
    return _setting(config, "hostname") + _setting(config, "query_path")


def pretty_string(text: str) -> str:
    """Re-indent a JSON document with four spaces; raises ValueError if it is not JSON."""
    return json.dumps(json.loads(text), indent=4, ensure_ascii=False)


def _read_line(stdin: TextIO) -> str:
    return stdin.readline().rstrip("\r\n")


def render_post_contents(
    platform: str, persona: str, post_content: Mapping[str, str], signature: bytes
) -> dict[str, tuple[str, str]]:
    """Post text per language, with the signature as base64 and as base1024."""
    encodings = (
        base64.b64encode(signature).decode("ascii"),
        base1024.encode(signature),
    )
    rendered: dict[str, tuple[str, str]] = {}
    for lang_code, payload in post_content.items():
        if platform == Platform.DAS:
            b64, b1024 = (f"{persona}:{enc}" for enc in encodings)
        else:
            b64, b1024 = (payload.replace(SIGNATURE_PLACEHOLDER, enc) for enc in encodings)
        rendered[lang_code] = (b64, b1024)
    return rendered


def build_upload_request(
    action: str,
    platform: str,
    identity: str,
    persona: str,
    created_at: str,
    uuid: str,
    location: str,
    signature: bytes,
    wallet_signature: bytes | None,
) -> dict[str, Any]:
    """Body of a proof upload request."""
    wallet = ""
    if platform == Platform.ETHEREUM:
        wallet = base64.b64encode(wallet_signature or b"").decode("ascii")
    return {
        "action": str(action),
        "platform": str(platform),
        "identity": identity.lower(),
        "proof_location": location,
        "public_key": persona,
        "uuid": uuid,
        "created_at": created_at,
        "extra": {
            "signature": base64.b64encode(signature).decode("ascii"),
            "wallet_signature": wallet,
        },
    }


def _get_and_print(config: Any, params: dict[str, str], stdout: TextIO) -> None:
    try:
        response = requests.get(query_url(config), params=params)
    except requests.RequestException as exc:
        raise RuntimeError(f"Oops, fail to get the result, err:{exc}") from exc
    try:
        print(pretty_string(response.text), file=stdout)
    except ValueError:
        print(response.text, file=stdout)


def query_proof(config: Any, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    """Ask for query conditions, print results, then page through them on request."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    print("For the query process, we could have platform/identity/page as the query condition\n",
          file=stdout)
    print("Platform (find out a support platform at README.md):", file=stdout)
    platform = _read_line(stdin)
    print("\nIdentity (find out the identity of each platform at README.md):", file=stdout)
    identity = _read_line(stdin)
    print("\nPage (We will give maximum 20 results for each query, you can give a page number "
          "for getting more results):", file=stdout)
    initial_page = _read_line(stdin)

    params = {"platform": platform, "identity": identity, "page": initial_page}
    _get_and_print(config, params, stdout)

    while True:
        print("\nChoose next step:\n 1. next page\n 2. Get the data of the specified page\n"
              " 3. Quit\n Enter the number:", file=stdout)
        step = _read_line(stdin)
        match step:
            case "1":
                try:
                    page = int(initial_page)
                except ValueError:
                    page = 0
                page += 1
                print(f"\nGet the data of Page {page}", file=stdout)
                params["page"] = str(page)
                _get_and_print(config, params, stdout)
            case "2":
                print("\nPlease enter the page number", file=stdout)
                params["page"] = _read_line(stdin)
                _get_and_print(config, params, stdout)
            case "3":
                return 0
            case _:
                raise ValueError(f"Unknown Operation {step}")


def generate_payload(
    config: Any, stdin: TextIO | None = None, stdout: TextIO | None = None
) -> int:
    """Fetch a sign payload, sign it, print post texts and optionally upload the proof."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    print("For the generate signature process, need your Persona Private Key at first step."
          "Please enter your Persona Private Key (without 0x prefix):", file=stdout)
    persona_key = private_key_from_hex(_read_line(stdin))
    print("\nThe following facts also need to use in signature generation process", file=stdout)
    print("Platform (find out the support platform at README.md):", file=stdout)
    platform = _read_line(stdin)
    print("\nIdentity (find out the identity of each platform at README.md):", file=stdout)
    identity = _read_line(stdin)
    print("\nAction (create or delete):", file=stdout)
    action = _read_line(stdin)

    ethereum_key = None
    if platform == Platform.ETHEREUM:
        print("\nEthereum Private Key (without 0x prefix):", file=stdout)
        ethereum_key = private_key_from_hex(_read_line(stdin))

    persona = "0x" + compressed_pubkey_hex(persona_key.public_key)
    body = {
        "action": action,
        "platform": platform,
        "identity": identity,
        "public_key": persona,
        "extra": {"wallet_signature": ""},
    }
    try:
        response = requests.post(payload_url(config), json=body)
    except requests.RequestException as exc:
        raise RuntimeError(f"fail to get the response err:{exc}") from exc
    if response.status_code != 200:
        raise RuntimeError(f"fail to get the response resp:{response.text}")
    try:
        answer = response.json()
    except ValueError as exc:
        raise RuntimeError(f"Unmarshal Payload Response Error, err:{exc}") from exc

    sign_payload = answer.get("sign_payload") or ""
    signature = sign_personal(sign_payload.encode(), persona_key)
    wallet_signature = b""

    if action == Action.CREATE:
        if platform == Platform.ETHEREUM:
            print("\n\nPost base64 encode payload: vvvvvvvvvv\n"
                  f"{base64.b64encode(signature).decode()}\n^^^^^^^^^^^^^^^\n", file=stdout)
            print("Post base1024 encode payload: vvvvvvvvvv\n"
                  f"{base1024.encode(signature)}\n^^^^^^^^^^^^^^^\n", file=stdout)
            wallet_signature = sign_personal(sign_payload.encode(), ethereum_key)
            print("Wallet base64 sig: vvvvvvvvvv\n"
                  f"{base64.b64encode(wallet_signature).decode()}\n^^^^^^^^^^^^^^^\n",
                  file=stdout)
        else:
            contents = render_post_contents(
                platform, persona, answer.get("post_content") or {}, signature
            )
            for lang_code, (b64_text, b1024_text) in contents.items():
                print(f"Post base64 encode payload [{lang_code}]: vvvvvvv\n"
                      f"{b64_text}\n^^^^^^^^^^\n", file=stdout)
                print(f"Post base1024 encode payload [{lang_code}]: vvvvvvv\n"
                      f"{b1024_text}\n^^^^^^^^^^\n", file=stdout)

    print("Need to upload the proof?\n 1. yes\n 2. no\n Press the number:", file=stdout)
    if _read_line(stdin).strip() != "1":
        print("no need to continue...", file=stdout)
        return 0

    location = ""
    if action == Action.CREATE and platform != Platform.ETHEREUM:
        print("Proof Location (find out how to get the proof location for each platform "
              "at README.md):", file=stdout)
        location = _read_line(stdin)

    upload = build_upload_request(
        action, platform, identity, persona,
        str(answer.get("created_at") or ""), str(answer.get("uuid") or ""),
        location, signature, wallet_signature,
    )
    try:
        result = requests.post(upload_url(config), json=upload)
    except requests.RequestException as exc:
        raise RuntimeError(f"Oops, some error occured. err:{exc}") from exc
    if result.status_code != 201:
        raise RuntimeError(f"Oops, some error occured. resp:{result.text}")
    print("Upload succeed!!", file=stdout)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Choose between querying proofs and generating and uploading one."""
    parser = argparse.ArgumentParser(prog="proofserver-cli", description="Proof service client.")
    parser.add_argument("--config-dir", default="./config/", help="Directory holding cli.toml")
    args = parser.parse_args(argv)

    print("Choose the process\n 1. query the exists proof\n 2. generate the signature and "
          "upload to proof service\nEnter the number of above process")
    choice = _read_line(sys.stdin).strip()
    if choice not in (OPERATION_QUERY, OPERATION_GENERATE):
        print(f"Unknow Operation: {choice}")
        return 1

    try:
        config = load_cli_config(args.config_dir)
    except ConfigError as exc:
        print(f"fatal error config file: cli err:{exc}")
        return 1

    if choice == OPERATION_QUERY:
        return query_proof(config)
    return generate_payload(config)