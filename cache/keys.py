"""
Cache key derivation.

Keys are namespaced as ``{method}/{chain_id}/{suffix}`` so that two method
families can never share an entry. The suffix is either a normalized
identifier (hash or block number) or a SHA-256 digest of a canonical
serialization of a variable-shape parameter payload.
"""
import hashlib
import json
import re
from typing import Any, Mapping, Optional, Union

from .errors import KeyInputMalformed
from .models import RpcMethod

MethodName = Union[RpcMethod, str]

_HEX_IDENTIFIER = re.compile(r"^0[xX][0-9a-fA-F]+$")


def canonical_json(payload: Any) -> str:
    """Serialize a JSON value with sorted keys and no insignificant whitespace."""
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise KeyInputMalformed(f"Parameters are not JSON serializable: {e}")


def generate_cache_key(chain_id: str, data: str) -> str:
    """Digest ``chain_id:data`` and render it as ``{chain_id}:{sha256 hex}``."""
    hasher = hashlib.sha256()
    hasher.update(chain_id.encode("utf-8"))
    hasher.update(b":")
    hasher.update(data.encode("utf-8"))
    return f"{chain_id}:{hasher.hexdigest()}"


def normalize_identifier(identifier: str) -> str:
    """Lowercase a hex identifier, rejecting anything that isn't ``0x`` hex."""
    if not isinstance(identifier, str) or not _HEX_IDENTIFIER.match(identifier):
        raise KeyInputMalformed(f"Identifier is not hex: {identifier!r}")
    return identifier.lower()


def _method_name(method: MethodName) -> str:
    return method.value if isinstance(method, RpcMethod) else str(method)


class CacheKeyCodec:
    """Pure, deterministic key derivation for every cacheable method family."""

    @staticmethod
    def key_for(
        method: MethodName,
        chain_id: str,
        identifier_material: Any,
        variant: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Derive the cache key for a request.

        Args:
            method: Method family, used as the key namespace
            chain_id: Chain the request targets
            identifier_material: A hex identifier (hash or block number) used
                directly, or a parameter payload that is canonicalized and hashed
            variant: Secondary parameters that change the response shape
                (e.g. the hydrated-transactions flag); omitted when empty

        Returns:
            The namespaced cache key

        Raises:
            KeyInputMalformed: If the identifier isn't hex or the payload
                can't be serialized
        """
        if not chain_id:
            raise KeyInputMalformed("Chain id must not be empty")

        if isinstance(identifier_material, str):
            suffix = normalize_identifier(identifier_material)
        else:
            suffix = generate_cache_key(chain_id, canonical_json(identifier_material))

        if variant:
            variant_digest = hashlib.sha256(canonical_json(dict(variant)).encode("utf-8")).hexdigest()
            suffix = f"{suffix}:{variant_digest}"

        return f"{_method_name(method)}/{chain_id}/{suffix}"


def key_for(
    method: MethodName,
    chain_id: str,
    identifier_material: Any,
    variant: Optional[Mapping[str, Any]] = None,
) -> str:
    """Module-level shortcut for CacheKeyCodec.key_for."""
    return CacheKeyCodec.key_for(method, chain_id, identifier_material, variant)
