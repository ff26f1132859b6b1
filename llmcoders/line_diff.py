"""
Patience-style line diff used for approval previews.

Lines that occur exactly once on both sides are anchors. The longest run of
anchors that keeps the same order in both texts becomes the unchanged
skeleton; every gap between anchors is emitted as all removed lines followed
by all added lines. The result is stable, not minimal.
"""

import re
from bisect import bisect_left
from dataclasses import dataclass
from typing import Dict, List, Tuple

UNCHANGED = "unchanged"
REMOVED = "removed"
ADDED = "added"

_PREFIX = {UNCHANGED: "  ", REMOVED: "- ", ADDED: "+ "}
_SPLIT_RE = re.compile(r"\r\n|\n|\r")


@dataclass(frozen=True)
class DiffLine:
    tag: str
    text: str

    def render(self) -> str:
        return _PREFIX[self.tag] + self.text


def split_lines(text: str) -> List[str]:
    return _SPLIT_RE.split(text)


def _unique_anchors(a: List[str], b: List[str]) -> List[Tuple[int, int]]:
    counts: Dict[str, List[int]] = {}
    for i, line in enumerate(a):
        entry = counts.setdefault(line, [0, -1, 0, -1])
        entry[0] += 1
        entry[1] = i
    for j, line in enumerate(b):
        entry = counts.get(line)
        if entry is not None:
            entry[2] += 1
            entry[3] = j
    pairs = [(e[1], e[3]) for e in counts.values() if e[0] == 1 and e[2] == 1]
    pairs.sort()
    return pairs


def _longest_increasing(pairs: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """LIS over the second coordinate of pairs already sorted by the first."""
    tails: List[int] = []
    tail_idx: List[int] = []
    prev: List[int] = [-1] * len(pairs)
    for k, (_, bj) in enumerate(pairs):
        pos = bisect_left(tails, bj)
        if pos == len(tails):
            tails.append(bj)
            tail_idx.append(k)
        else:
            tails[pos] = bj
            tail_idx[pos] = k
        prev[k] = tail_idx[pos - 1] if pos > 0 else -1
    out: List[Tuple[int, int]] = []
    k = tail_idx[-1] if tail_idx else -1
    while k >= 0:
        out.append(pairs[k])
        k = prev[k]
    out.reverse()
    return out


def diff_lines(old: List[str], new: List[str]) -> List[DiffLine]:
    anchors = _longest_increasing(_unique_anchors(old, new))
    out: List[DiffLine] = []
    ai = bi = 0
    for aj, bj in anchors + [(len(old), len(new))]:
        out.extend(DiffLine(REMOVED, line) for line in old[ai:aj])
        out.extend(DiffLine(ADDED, line) for line in new[bi:bj])
        if aj < len(old):
            out.append(DiffLine(UNCHANGED, old[aj]))
        ai, bi = aj + 1, bj + 1
    return out


def diff(old_text: str, new_text: str) -> List[DiffLine]:
    """Line diff of two texts. An empty text counts as one empty line."""
    return diff_lines(split_lines(old_text), split_lines(new_text))


def render(lines: List[DiffLine]) -> str:
    return "\n".join(line.render() for line in lines)


def render_diff(old_text: str, new_text: str) -> str:
    return render(diff(old_text, new_text))
