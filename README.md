# proofserver

A small HTTP service that keeps a chain of signed proofs binding a persona
public key (secp256k1) to identities on other platforms, and answers
questions about them: which identities belong to a persona, whether a given
binding exists, and the history of changes. Records are kept in an SQLite
database (`proofserver.model.ProofStore`).

It also ships building blocks that are useful on their own:

- `proofserver.base1024`: the emoji-based Base1024 text encoding
  (`encode`, `decode`) used for signatures in posts.
- `proofserver.signing`: Ethereum-style "personal sign" signatures
  (`sign_personal`, `recover_pubkey_from_personal_signature`,
  `validate_personal_signature`), key parsing and compressed key hex.
- `proofserver.headless`: request models, validation (`check_find_request`)
  and an HTTP client (`HeadlessClient`) for a headless-browser lookup service.
- `proofserver.sqs`: `QueueSender`, which serialises messages to JSON and
  hands them to any object implementing the `QueueApi` protocol.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Running the server

```
proofserver --config ./config/config.json --port 9800 --database proofs.sqlite3
```

`--config` defaults to `./config/config.json`, `--port` to `9800` and
`--database` to `proofs.sqlite3`; the server listens on `0.0.0.0`. The
configuration file must exist and parse as JSON of this shape; its `db`
section is read but storage always goes to the SQLite file given by
`--database`.

```json
{
  "db": {"host": "localhost", "port": 5432, "db_name": "proof", "tz": "UTC"},
  "platform": {},
  "arweave": {"jwk": "", "client_url": ""},
  "sqs": {"queue_name": ""}
}
```

`/healthz` reports build information taken from the environment variables
`PROOFSERVER_ENVIRONMENT`, `PROOFSERVER_REVISION`, `PROOFSERVER_BUILD_TIME`
and `PROOFSERVER_RUNTIME` (`standalone` or `lambda`).

### Endpoints

| Method | Path                     | Purpose                                              |
|--------|--------------------------|------------------------------------------------------|
| GET    | `/healthz`               | Service, environment and build information           |
| GET    | `/v1/proof`              | Search proofs by identity (and optionally platform)  |
| GET    | `/v1/proof/exists`       | Check one persona/platform/identity binding          |
| GET    | `/v1/proofchain`         | Paginated proof-chain history of a persona           |
| GET    | `/v1/proofchain/changes` | Proof-chain records after a given id, oldest first   |

`/v1/proof` accepts `identity` (comma separated for several), `platform`
(`nextid` to search by persona key instead), `page`, `exact=true` for exact
matching, `sort` (`id`, `created_at`, `last_checked_at`, `proof_chain_id`,
`platform`, `identity`, `alt_id`, `activated_at`) and `order` (`asc` or
`desc`). Pages hold 20 results; the `pagination` object reports `total`,
`per`, `current` and `next` (0 when there is no further page).

`/v1/proofchain/changes` accepts `last_id` and `count` (default 10, at most
100).

An application built with `create_app(store)` runs
`app.config["PROOF_REVALIDATE"]`, when set to a callable taking a proof id,
in a background thread for every outdated proof (last checked more than
three days ago) met while answering queries.

## Command-line client

```
proofserver-cli --config-dir ./config/
```

The client asks interactively whether to query existing proofs or to
generate a signature and upload a proof. It reads `cli.toml` from the
configuration directory:

```toml
[server]
hostname = "http://localhost:9800"
query_path = "/v1/proof"
generate_path = "/v1/proof/payload"
upload_path = "/v1/proof"
```

## What this package does not do

- The server only reads proofs. It has no endpoint that issues sign payloads
  or accepts proof uploads, so the generate-and-upload step of
  `proofserver-cli` needs a proof service that offers `POST
  /v1/proof/payload` and `POST /v1/proof`.
- There are no platform checkers: nothing here fetches a post from Twitter,
  GitHub or any other platform to confirm a proof, and `/healthz` lists no
  platforms unless `app.config["PROOF_PLATFORMS"]` is filled in.
- There is no headless browser; `HeadlessClient` only talks to one running
  elsewhere.
- `QueueSender` has no built-in connection to a hosted queue; supply your own
  `QueueApi` implementation.

## Library use

```python
from proofserver import base1024, signing

assert base1024.encode(b"Maskbook") == "🐟🔂🏁🤖💧🚊😤"
assert base1024.decode("🐟🔂🏁🤖💧🚊😤") == b"Maskbook"

verify_key, signer = signing.generate_keypair()
signature = signing.sign_personal(b"hello", signer)
signing.validate_personal_signature("hello", signature, verify_key)  # raises SignatureError on mismatch

print(signing.compressed_pubkey_hex(verify_key))
```