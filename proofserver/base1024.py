"""Base1024 emoji encoding of binary data."""

from __future__ import annotations

from itertools import accumulate

_ALPHABET = (
    "0,2pz8,1,5n,2,4h,4,d,6,f,7,3,h,2v,j,o,k,l,l,3,u,m,w,4v,1u,3,4y,3,50,2,53,3,"
    "7e,3,7h,2,es,2,gj,c,gp,2,hd,8,hf,3,hg,2,hm,d,hn,3,hr,3,hs,5,hu,e,hw,3,hx,9,"
    "hz,a,i0,6,i3,d,i6,9,i9,3,ia,2,ib,5,ic,7,id,4,ie,7,ks,1d,mq,6,my,3,mz,b,n5,4,"
    "n6,2,n8,4,n9,3,nh,6e,nt,82,p3,2,pd,2,qk,2,qo,4,rt,3,rz,4"
)

# Marker appended when the input length leaves a remainder of four bytes.
TAIL = "\\ud83c\\udfad"


def _build_emojis() -> list[str]:
    values = [int(part, 36) for part in _ALPHABET.split(",")]
    steps = [1] * 1024
    for index, value in zip(values[::2], values[1::2]):
        steps[index] = value
    return [chr(point) for point in accumulate(steps)]


EMOJIS: list[str] = _build_emojis()
_INDEX = {emoji: i for i, emoji in enumerate(EMOJIS)}


def _chunks(seq, size):
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


def encode(data: bytes) -> str:
    """Encode bytes as a string of emoji, five bytes to four symbols."""
    points: list[int] = []
    for chunk in _chunks(bytes(data), 5):
        b = list(chunk) + [0] * (5 - len(chunk))
        group = [
            (b[0] << 2) | (b[1] >> 6),
            ((b[1] & 0x3F) << 4) | (b[2] >> 4),
            ((b[2] & 0xF) << 6) | (b[3] >> 2),
            ((b[3] & 0x3) << 8) | b[4],
        ]
        points.extend(group if len(chunk) == 5 else group[:len(chunk)])
    text = "".join(EMOJIS[p] for p in points)
    if len(data) % 5 == 4:
        text += TAIL
    return text


def decode(text: str) -> bytes:
    """Decode a Base1024 emoji string; raises ValueError on unknown symbols."""
    trim_tail = text.endswith(TAIL)
    if trim_tail:
        text = text.rstrip(TAIL)
    try:
        points = [_INDEX[ch] for ch in text]
    except KeyError as exc:
        raise ValueError(f"symbol not in base1024 alphabet: {exc.args[0]!r}") from None

    out: list[int] = []
    for chunk in _chunks(points, 4):
        p = chunk + [0] * (4 - len(chunk))
        group = [
            p[0] >> 2,
            ((p[0] & 0x3) << 6) | (p[1] >> 4),
            ((p[1] & 0xF) << 4) | (p[2] >> 6),
            ((p[2] & 0x3F) << 2) | (p[3] >> 8),
            p[3] & 0xFF,
        ]
        out.extend(group if len(chunk) == 4 else group[:len(chunk)])
    if trim_tail and out:
        out.pop()
    return bytes(x & 0xFF for x in out)