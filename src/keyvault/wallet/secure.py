"""
Zero-on-drop containers for secret material.

Mnemonic phrases, seeds and session keys are held in a mutable buffer that
is overwritten with zeros when the owner wipes it, leaves a ``with`` block,
or is garbage collected. The containers refuse to be pickled, copied or
JSON-encoded, so secret material cannot reach storage by accident.
"""

import hmac
from typing import Optional


class SecretBytes:
    """Mutable byte buffer that wipes itself."""

    __slots__ = ("_buf", "__weakref__")

    def __init__(self, value: bytes | bytearray = b""):
        self._buf: Optional[bytearray] = bytearray(value)
        if isinstance(value, bytearray):
            # Caller handed over a mutable buffer: clear their copy too
            for i in range(len(value)):
                value[i] = 0

    @classmethod
    def from_str(cls, value: str) -> "SecretBytes":
        return cls(value.encode("utf-8"))

    @property
    def wiped(self) -> bool:
        return self._buf is None

    def reveal(self) -> bytes:
        """
        Return an immutable copy of the secret.

        The copy is outside this container's control; use it for the duration
        of a single library call and drop it.
        """
        if self._buf is None:
            raise ValueError("Secret has been wiped")
        return bytes(self._buf)

    def reveal_str(self) -> str:
        return self.reveal().decode("utf-8")

    def wipe(self) -> None:
        """Overwrite the buffer with zeros and release it."""
        buf = self._buf
        if buf is None:
            return
        for i in range(len(buf)):
            buf[i] = 0
        self._buf = None

    def __len__(self) -> int:
        return 0 if self._buf is None else len(self._buf)

    def __eq__(self, other) -> bool:
        if isinstance(other, SecretBytes):
            if self._buf is None or other._buf is None:
                return False
            return hmac.compare_digest(self._buf, other._buf)
        return NotImplemented

    __hash__ = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False

    def __del__(self):
        self.wipe()

    def __repr__(self) -> str:
        state = "wiped" if self._buf is None else f"{len(self._buf)} bytes"
        return f"<{type(self).__name__} redacted ({state})>"

    __str__ = __repr__

    # Never serialisable
    def __reduce__(self):
        raise TypeError(f"{type(self).__name__} cannot be serialized")

    def __copy__(self):
        raise TypeError(f"{type(self).__name__} cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError(f"{type(self).__name__} cannot be copied")
