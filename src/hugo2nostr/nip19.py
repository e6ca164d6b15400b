"""NIP-19 references via nak CLI.

Encodes and decodes the ``nevent`` references stored in front matter as
``nostr_id``. The bech32 work is done by ``nak encode`` and ``nak decode``;
this module builds the commands, validates what comes back and classifies
foreign references by their prefix.
"""

import json

from .errors import DecodeError, NakInvocationError
from .models import ARTICLE_KIND, EventReference
from .nak import DEFAULT_TIMEOUT, run_nak

BECH32_CHARS = set("023456789acdefghjklmnpqrstuvwxyz")
HEX_CHARS = set("0123456789abcdefABCDEF")

KNOWN_TYPES = ("nevent", "note", "nprofile", "npub", "nsec", "naddr")

# Six checksum characters plus at least one data character
_MIN_DATA_LENGTH = 7


def reference_type(reference: str) -> str:
    """Return the NIP-19 type of a reference without decoding it.

    CONTRACT:
      Inputs:
        - reference: candidate bech32 string, e.g. "nevent1..." or "npub1..."

      Outputs:
        - type: human-readable prefix, one of KNOWN_TYPES

      Algorithm:
        1. Reject empty values and whitespace
        2. Split at the last "1" into prefix and data part
        3. Prefix must be a known NIP-19 type
        4. Data part must be long enough and use only bech32 characters

      Raises:
        - DecodeError: not a bech32 string of a known NIP-19 type
    """
    if not reference or not isinstance(reference, str):
        raise DecodeError("reference must be non-empty string")

    if any(c.isspace() for c in reference):
        raise DecodeError("reference must not contain whitespace")

    prefix, separator, data = reference.rpartition("1")
    if not separator or not prefix:
        raise DecodeError(f"reference has no bech32 prefix: {reference[:10]}")

    if prefix not in KNOWN_TYPES:
        raise DecodeError(f"unsupported reference type: {prefix[:10]}")

    if len(data) < _MIN_DATA_LENGTH:
        raise DecodeError(f"{prefix} data part too short")

    for char in data:
        if char not in BECH32_CHARS:
            raise DecodeError(f"{prefix} contains invalid bech32 character: '{char}'")

    return prefix


def encode_nevent(event_id: str, relays: list[str], timeout: int = DEFAULT_TIMEOUT) -> str:
    """Encode an event reference as a NIP-19 nevent.

    CONTRACT:
      Inputs:
        - event_id: 64 hex characters
        - relays: relay URLs, written in the given order
        - timeout: seconds to wait for nak

      Outputs:
        - reference: "nevent1..." string

      Properties:
        - Deterministic: same (event_id, relays) gives the same string
        - Order-sensitive: relay membership and order change the output, which
          is how stale references are detected
        - Reversible: decode_nevent returns the same id and relays

      Raises:
        - ValueError: event_id is not 64 hex characters
        - NakInvocationError: nak failed or printed something other than an nevent
    """
    if not _is_hex32(event_id):
        raise ValueError(f"event id must be 64 hex characters, got {str(event_id)[:16]!r}")

    cmd = ["nak", "encode", "nevent"]
    for relay in relays:
        cmd.extend(["--relay", relay])
    cmd.append(event_id.lower())

    returncode, stdout, stderr = run_nak(cmd, None, timeout)
    if returncode != 0:
        raise NakInvocationError(stderr.strip() or f"nak exited with code {returncode}")

    reference = stdout.strip()
    if not reference:
        raise NakInvocationError("nak produced empty output")

    try:
        prefix = reference_type(reference)
    except DecodeError as e:
        raise NakInvocationError(f"nak produced an invalid reference: {e}") from None
    if prefix != "nevent":
        raise NakInvocationError(f"nevent must start with 'nevent1', got: {reference[:10]}")

    return reference


def decode_nevent(
    reference: str, expected_kind: int | None = ARTICLE_KIND, timeout: int = DEFAULT_TIMEOUT
) -> EventReference:
    """Decode a stored nostr_id and check it points at an article.

    The prefix is checked before nak is run, so foreign references (npub,
    naddr, ...) never cost a subprocess. References without a kind entry are
    taken to be of expected_kind.

    Raises:
        - DecodeError: not an nevent, undecodable, or of another kind
        - NakInvocationError: nak could not be run
    """
    prefix = reference_type(reference)
    if prefix != "nevent":
        raise DecodeError(f"expected nevent, got {prefix}")

    data = _parse_pointer(_nak_decode(reference, timeout))

    event_id = data.get("id")
    if not _is_hex32(event_id):
        raise DecodeError("nevent does not carry a 32-byte event id")

    kind = data.get("kind")
    if kind is not None and not isinstance(kind, int):
        raise DecodeError(f"nevent kind is not an integer: {kind!r}")
    if kind is not None and expected_kind is not None and kind != expected_kind:
        raise DecodeError(f"nevent refers to kind {kind}, expected {expected_kind}")

    relays = data.get("relays") or []
    if not isinstance(relays, list):
        raise DecodeError("nevent relays must be a list")

    return EventReference(
        id=event_id.lower(),
        relays=[str(relay) for relay in relays],
        kind=kind if kind is not None else expected_kind,
        author=data.get("author") or None,
    )


def is_article_reference(reference: str) -> bool:
    try:
        decode_nevent(reference)
    except DecodeError:
        return False
    return True


def reencode_with_relays(reference: str, relays: list[str], timeout: int = DEFAULT_TIMEOUT) -> str:
    """Replace the relay hints of an article reference, keeping its event id.

    Raises:
        - DecodeError: reference is not an article nevent
        - NakInvocationError: nak failed
    """
    decoded = decode_nevent(reference, timeout=timeout)
    return encode_nevent(decoded.id, relays, timeout)


def decode_private_key(value: str, timeout: int = DEFAULT_TIMEOUT) -> str:
    """Return a private key as lowercase hex.

    Accepts 64 hex characters or an nsec; nsec keys are decoded with nak.

    Raises:
        - DecodeError: neither a hex key nor a decodable nsec
        - NakInvocationError: nak could not be run
    """
    value = (value or "").strip()

    if value.startswith("nsec1"):
        if reference_type(value) != "nsec":
            raise DecodeError("private key must be an nsec")
        value = _nak_decode(value, timeout)

    if not _is_hex32(value):
        raise DecodeError("private key must be 64 hex characters or an nsec")
    return value.lower()


def _nak_decode(reference: str, timeout: int) -> str:
    returncode, stdout, stderr = run_nak(["nak", "decode", reference], None, timeout)
    if returncode != 0:
        raise DecodeError(stderr.strip() or f"nak could not decode {reference[:10]}")

    output = stdout.strip()
    if not output:
        raise DecodeError(f"nak produced no output for {reference[:10]}")
    return output


def _parse_pointer(output: str) -> dict:
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("{") and line.endswith("}"):
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise DecodeError(f"unparseable nak decode output: {e}") from None
            if isinstance(data, dict):
                return data
    raise DecodeError("nak decode printed no event pointer")


def _is_hex32(value) -> bool:
    return isinstance(value, str) and len(value) == 64 and all(c in HEX_CHARS for c in value)
