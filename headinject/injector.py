"""
Streaming snippet injection for HTML response bodies.

An `Injector` is created per response and fed the body chunk by chunk. It
decodes each chunk with a strict incremental decoder, splices the snippet in
front of the first `</head>` it sees and re-encodes the text with the same
codec. As soon as anything suggests that the body cannot be round-tripped
(an unsupported <meta> charset, an invalid byte sequence), the injector
switches to passthrough and forwards the remaining bytes unchanged.

Instances follow the calling convention of `mitmproxy.http.Message.stream`:
they are called once per chunk and once more with b"" at the end of the
message. A chunk that yields no output (part of a multibyte character, or
text held back by the lookback buffer) returns an empty list, never b"".
`feed` and `flush` always return bytes.
"""
import codecs
import enum
import logging

from headinject import charset

logger = logging.getLogger(__name__)

MARKER = "</head>"


class State(enum.Enum):
    START = "start"
    """No chunk has been seen yet."""
    SCANNING = "scanning"
    """Decoding and looking for the marker."""
    DRAINED = "drained"
    """The snippet has been injected, chunks are still transcoded."""
    PASSTHROUGH = "passthrough"
    """Raw bytes are forwarded unchanged until the end of the stream."""


def _held_back(text: str, marker: str) -> int:
    """
    Length of the longest proper prefix of marker that text ends with.
    """
    for n in range(min(len(marker) - 1, len(text)), 0, -1):
        if text.endswith(marker[:n]):
            return n
    return 0


class Injector:
    def __init__(
        self,
        snippet: str,
        *,
        charset_hint: str | None = None,
        lookback: bool = False,
        marker: str = MARKER,
    ) -> None:
        if not marker:
            raise ValueError("Injection marker must not be empty.")
        self.snippet = snippet
        self.marker = marker
        self.lookback = lookback
        self.charset_hint = charset_hint
        self.encoding = charset_hint or charset.DEFAULT_CHARSET
        self.state = State.START
        self.finished = False
        self._decoder: codecs.IncrementalDecoder | None = None
        self._carry = ""

    def __repr__(self):
        return f"Injector({self.state.value}, encoding={self.encoding!r})"

    @property
    def injected(self) -> bool:
        return self.state is State.DRAINED

    def __call__(self, data: bytes) -> bytes | list[bytes]:
        if not data:
            return self.flush()
        # A b"" result ends a chunked HTTP/1 body, so nothing to send is [].
        return self.feed(data) or []

    def feed(self, data: bytes) -> bytes:
        """Process one body chunk and return the bytes to forward."""
        if self.finished and data and self.state is not State.PASSTHROUGH:
            # HTTP/2 peers may send empty data frames before the end of stream.
            logger.debug("Received data after end of body, passing through.")
            self._fall_back(b"")
        if not data:
            return b""
        if self.state is State.START:
            self._start(data)
        if self.state is State.PASSTHROUGH:
            return data
        assert self._decoder

        pending = self._pending()
        try:
            text = self._decoder.decode(data)
        except UnicodeDecodeError as e:
            logger.debug(f"Cannot decode body as {self.encoding} ({e}), passing through.")
            return self._fall_back(pending + data)

        state, carry = self.state, self._carry
        try:
            return self._encode(self._scan(text))
        except Exception as e:
            logger.warning(f"Failed to process response chunk, forwarding it unmodified: {e}")
            self.state = state
            self._carry = ""
            self._decoder.reset()
            return self._encode(carry) + pending + data

    def flush(self) -> bytes:
        """Signal the end of the body and return any bytes still held back."""
        if self.finished:
            return b""
        self.finished = True
        if self.state in (State.START, State.PASSTHROUGH):
            return b""
        assert self._decoder

        pending = self._pending()
        try:
            text = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            logger.debug(f"Body ends with an incomplete {self.encoding} sequence: {e}")
            return self._fall_back(pending)
        out = self._encode(self._carry + text)
        self._carry = ""
        return out

    def _start(self, data: bytes) -> None:
        # Declarations are ASCII, so a latin-1 view of the raw bytes is enough
        # to find them before the actual codec is known.
        declared = charset.sniff_charset(data.decode("latin-1"))
        if self.charset_hint and not charset.is_supported(self.charset_hint):
            declared = self.charset_hint
        if declared is not None and not charset.is_supported(declared):
            logger.debug(f"Document declares unsupported charset {declared!r}, passing through.")
            self.state = State.PASSTHROUGH
            return
        if declared is not None and not self.charset_hint:
            self.encoding = declared
        try:
            self.snippet.encode(self.encoding)
        except UnicodeEncodeError as e:
            logger.debug(f"Snippet cannot be encoded as {self.encoding} ({e}), passing through.")
            self.state = State.PASSTHROUGH
            return
        self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="strict")
        self.state = State.SCANNING

    def _scan(self, text: str) -> str:
        if self.state is not State.SCANNING:
            return text
        text = self._carry + text
        self._carry = ""
        pos = text.find(self.marker)
        if pos > -1:
            self.state = State.DRAINED
            logger.debug(f"Injected snippet before {self.marker}.")
            return text[:pos] + self.snippet + text[pos:]
        if self.lookback:
            if n := _held_back(text, self.marker):
                self._carry = text[-n:]
                return text[:-n]
        return text

    def _pending(self) -> bytes:
        # Bytes of an incomplete multibyte sequence buffered by the decoder.
        if self._decoder is None:
            return b""
        return self._decoder.getstate()[0]

    def _fall_back(self, raw: bytes) -> bytes:
        self.state = State.PASSTHROUGH
        held = self._encode(self._carry)
        self._carry = ""
        self._decoder = None
        return held + raw

    def _encode(self, text: str) -> bytes:
        return text.encode(self.encoding)
