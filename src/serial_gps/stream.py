import logging
import time

from serial_gps.debounce import StatePublisher
from serial_gps.framer import BufferOverflow, LineFramer
from serial_gps.sentences import DecodeError, DecoderSession, decode_sentence, split_sentences

logger = logging.getLogger(__name__)


class StreamProcessor:
    """Frames one source's bytes and pushes every decoded sentence through the publisher.

    Sentences are handled strictly in arrival order; each one is fully
    published before the next is decoded.
    """

    def __init__(
        self,
        name: str,
        session: DecoderSession,
        publisher: StatePublisher,
        max_buffer_bytes: int = 4096,
    ) -> None:
        self.name = name
        self.session = session
        self.publisher = publisher
        self.framer = LineFramer(max_buffer_bytes)

    @property
    def state(self):
        return self.publisher.state

    def reset(self) -> None:
        self.framer.reset()

    def feed(self, data: bytes) -> None:
        try:
            for line in self.framer.feed(data):
                self.process_line(line)
        except BufferOverflow as exc:
            self.state.buffer_overflows += 1
            logger.warning("%s: discarding pending input (%s)", self.name, exc)

    def process_line(self, line: str) -> None:
        for text in split_sentences(line):
            result = decode_sentence(text, self.session)
            if isinstance(result, DecodeError):
                self.state.parse_errors += 1
                logger.debug("%s: dropping sentence (%s): %s", self.name, result.reason, result.sentence)
                continue

            self.state.sentences_received += 1
            self.state.last_sentence_time = time.monotonic()
            self.publisher.publish_updates(result)
