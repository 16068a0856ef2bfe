"""NMEA-0183 checksum verification.

The checksum is the XOR of every character between the leading ``$`` and the
``*``, written after the ``*`` as two hexadecimal digits. Sentences without a
``*`` are accepted as-is, since some receivers never send a checksum.
"""

import pynmea2


def compute(payload: str) -> str:
    """Return the two-digit uppercase checksum of ``payload``."""
    return f"{pynmea2.NMEASentence.checksum(payload):02X}"


def verify(sentence: str) -> bool:
    """Check ``sentence`` (with or without the leading ``$``) against its checksum."""
    try:
        pynmea2.parse(sentence)
    except pynmea2.ChecksumError:
        return False
    except (pynmea2.SentenceTypeError, IndexError):
        # Both are raised after the checksum was compared
        return True
    except pynmea2.ParseError:
        # A truncated or non-hex checksum does not match the sentence grammar
        return "*" not in sentence
    return True
