# tests/test_client.py
import hashlib
import hmac
import json

from shieldlab import client


def test_sign_hmac_matches_server_scheme():
    body = b'{"kind":"filecreate"}'
    ts, nonce, sig = client.sign_hmac("s3cret", body, ts=1700000000)

    msg = b"1700000000\n" + nonce.encode() + b"\n" + body
    assert ts == "1700000000"
    assert sig == hmac.new(b"s3cret", msg, hashlib.sha256).hexdigest()


def test_unsigned_headers_when_no_secret():
    assert client.signed_headers("", b"{}") == {"Content-Type": "application/json"}


def test_main_builds_payload(monkeypatch):
    sent = {}

    def fake_post(url, secret, payload, timeout=5):
        sent.update(url=url, secret=secret, payload=payload)
        return 202, json.dumps({"ok": True})

    monkeypatch.setattr(client, "post_event", fake_post)
    rc = client.main(["filedelete", "C:\\a.txt", "--url", "http://soc/ingest", "--host", "H1",
                      "--ip", "203.0.113.7"])

    assert rc == 0
    assert sent["url"] == "http://soc/ingest"
    assert sent["payload"]["kind"] == "filedelete"
    assert sent["payload"]["hostname"] == "H1"
    assert sent["payload"]["ip_address"] == "203.0.113.7"
    assert "username" not in sent["payload"]
