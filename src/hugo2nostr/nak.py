"""Nak subprocess invocation for signing, relay delivery and queries.

Handles external process communication with the nak CLI tool. Every call
talks to nak through stdin/stdout; nothing here retries or fans out.
"""

import json
import logging
import subprocess

from .errors import (
    NakInvocationError,
    PublishTimeoutError,
    RelayRejectedError,
    RelayUnreachableError,
    SigningError,
)
from .models import SignedEvent, UnsignedEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

_UNREACHABLE_MARKERS = ("connect", "dial", "no such host", "timeout", "timed out", "eof", "refused", "unreachable")


def run_nak(cmd: list[str], input_text: str | None, timeout: int) -> tuple[int, str, str]:
    """Run nak and return (returncode, stdout, stderr).

    Raises:
        - NakInvocationError: binary missing or process could not be driven
        - PublishTimeoutError: process exceeded timeout (killed)
    """
    try:
        process = subprocess.Popen(
            cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
        )
    except FileNotFoundError:
        raise NakInvocationError("nak binary not found in system PATH") from None
    except OSError as e:
        raise NakInvocationError(f"Failed to start nak subprocess: {e}") from None

    try:
        stdout, stderr = process.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
        raise PublishTimeoutError(f"nak subprocess timed out after {timeout} seconds") from None
    except Exception as e:
        process.kill()
        process.wait()
        raise NakInvocationError(f"Failed to communicate with nak subprocess: {e}") from None

    return process.returncode, stdout or "", stderr or ""


def sign_event(event: UnsignedEvent, secret_key: str, timeout: int = DEFAULT_TIMEOUT) -> SignedEvent:
    """Sign an event with nak without publishing it.

    CONTRACT:
      Inputs:
        - event: UnsignedEvent (kind, created_at, tags, content are kept as given)
        - secret_key: hex private key or nsec
        - timeout: seconds to wait for nak

      Outputs:
        - SignedEvent with id, pubkey and sig filled in by nak

      Properties:
        - Deterministic id: identical event and key yield the same id
        - No network: no relay arguments are passed

      Raises:
        - SigningError: nak refused to sign (bad key)
        - NakInvocationError: process failure or unparseable output
        - PublishTimeoutError: timeout exceeded
    """
    cmd = ["nak", "event", "--sec", secret_key]
    returncode, stdout, stderr = run_nak(cmd, json.dumps(event.to_dict()), timeout)

    if returncode != 0:
        message = stderr.strip() or f"nak exited with code {returncode}"
        if any(keyword in message.lower() for keyword in ("sec", "key", "sign")):
            raise SigningError(message)
        raise NakInvocationError(message)

    data = parse_nak_output(stdout)
    for name in ("id", "pubkey", "sig"):
        value = data.get(name)
        if not value or not isinstance(value, str) or not value.strip():
            raise NakInvocationError(f"nak output missing required field: {name}")

    return SignedEvent.from_dict(data)


def send_event(relay: str, event: SignedEvent, timeout: int = DEFAULT_TIMEOUT) -> None:
    """Deliver an already signed event to one relay.

    nak publishes a piped event as-is when its signature is valid, so the
    event id does not change between relays.

    Raises:
        - RelayRejectedError: relay answered with a failure (reason preserved)
        - RelayUnreachableError: connection problems or timeout
        - NakInvocationError: nak itself could not be run
    """
    cmd = ["nak", "event", relay]
    try:
        returncode, stdout, stderr = run_nak(cmd, json.dumps(event.to_dict()), timeout)
    except PublishTimeoutError:
        raise RelayUnreachableError(relay, f"timed out after {timeout} seconds") from None

    output = f"{stderr}\n{stdout}"
    reason = _relay_failure_reason(output)

    if returncode == 0 and reason is None and "success" in output.lower():
        return

    if reason is None:
        reason = stderr.strip() or f"nak exited with code {returncode}"

    if any(marker in reason.lower() for marker in _UNREACHABLE_MARKERS):
        raise RelayUnreachableError(relay, reason)
    raise RelayRejectedError(relay, reason)


def _relay_failure_reason(output: str) -> str | None:
    """Extract the text after "failed:" from nak's per-relay status line."""
    for line in output.splitlines():
        if line.lstrip().startswith("{"):
            continue
        if "failed" in line.lower():
            _, _, reason = line.partition("failed")
            reason = reason.lstrip(":. ").strip()
            return reason or "failed"
    return None


def query_events(relays: list[str], query: dict, timeout: int = DEFAULT_TIMEOUT) -> list[SignedEvent]:
    """Fetch events matching a filter from relays via ``nak req``.

    query keys: kinds (list[int]), authors (list[str]), since (int), limit (int).
    Events seen on several relays are returned once.

    Raises:
        - NakInvocationError: nak failed
        - PublishTimeoutError: timeout exceeded
    """
    cmd = ["nak", "req"]
    for kind in query.get("kinds", []):
        cmd.extend(["-k", str(kind)])
    for author in query.get("authors", []):
        cmd.extend(["-a", author])
    if query.get("since") is not None:
        cmd.extend(["-s", str(query["since"])])
    if query.get("limit") is not None:
        cmd.extend(["-l", str(query["limit"])])
    cmd.extend(relays)

    returncode, stdout, stderr = run_nak(cmd, None, timeout)
    if returncode != 0:
        raise NakInvocationError(stderr.strip() or f"nak exited with code {returncode}")

    events = []
    seen = set()
    for line in stdout.splitlines():
        line = line.strip()
        if not (line.startswith("{") and line.endswith("}")):
            continue
        try:
            event = SignedEvent.from_dict(json.loads(line))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.debug("Ignoring unparseable event line: %s", e)
            continue
        if event.id in seen:
            continue
        seen.add(event.id)
        events.append(event)
    return events


def derive_public_key(secret_key: str, timeout: int = DEFAULT_TIMEOUT) -> str:
    """Return the hex public key for a hex private key.

    Raises:
        - SigningError: nak rejected the key
        - NakInvocationError: process failure or unexpected output
    """
    returncode, stdout, stderr = run_nak(["nak", "key", "public", secret_key], None, timeout)
    if returncode != 0:
        raise SigningError(stderr.strip() or f"nak exited with code {returncode}")

    pubkey = stdout.strip()
    if len(pubkey) != 64:
        raise NakInvocationError(f"unexpected public key output: {pubkey[:16]}")
    try:
        int(pubkey, 16)
    except ValueError:
        raise NakInvocationError("public key must be valid hexadecimal") from None
    return pubkey


def parse_nak_output(stdout: str) -> dict:
    """Extract the event JSON object from nak stdout.

    nak prints status lines alongside the event; the event is the first line
    that is a JSON object.

    Raises:
        - NakInvocationError: no JSON object found or it cannot be parsed
    """
    json_line = None
    for line in stdout.strip().split("\n"):
        line = line.strip()
        if line.startswith("{") and line.endswith("}"):
            json_line = line
            break

    if not json_line:
        raise NakInvocationError("No JSON event found in nak output")

    try:
        data = json.loads(json_line)
    except json.JSONDecodeError as e:
        raise NakInvocationError(f"Failed to parse nak output as JSON: {e}") from e

    if not isinstance(data, dict):
        raise NakInvocationError("Nak output is not a JSON object")

    return data


class NakClient:
    """Signing and relay transport bound to one private key."""

    def __init__(self, secret_key: str | None, timeout: int = DEFAULT_TIMEOUT):
        self.secret_key = secret_key
        self.timeout = timeout
        self._public_key: str | None = None

    def public_key(self) -> str:
        if self._public_key is None:
            if not self.secret_key:
                raise SigningError("no private key configured")
            self._public_key = derive_public_key(self.secret_key, self.timeout)
        return self._public_key

    def sign(self, event: UnsignedEvent) -> SignedEvent:
        if not self.secret_key:
            raise SigningError("no private key configured")
        return sign_event(event, self.secret_key, self.timeout)

    def send(self, relay: str, event: SignedEvent) -> None:
        send_event(relay, event, self.timeout)

    def query(self, relays: list[str], query: dict) -> list[SignedEvent]:
        return query_events(relays, query, self.timeout)
