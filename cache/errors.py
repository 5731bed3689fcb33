"""
Error kinds raised inside the caching layer.

None of these ever reach the end client: the policy and the coordinator
catch them and degrade the caching decision to "skip".
"""


class CacheLayerError(Exception):
    """Base class for failures confined to the caching layer."""

    kind = "cache_layer"


class ProbeError(CacheLayerError):
    """The current chain head could not be determined."""

    kind = "probe"


class ProbeUnreachable(ProbeError):
    """The upstream node did not answer the head request."""

    kind = "probe_unreachable"


class ProbeMalformed(ProbeError):
    """The upstream node answered without a parseable block number."""

    kind = "probe_malformed"


class KeyInputMalformed(CacheLayerError):
    """A block number, hash or parameter payload could not be interpreted."""

    kind = "key_input_malformed"


class StoreUnavailable(CacheLayerError):
    """A backing store failed to read or write."""

    kind = "store_unavailable"
