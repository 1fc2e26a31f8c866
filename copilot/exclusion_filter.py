# copilot/exclusion_filter.py
import re
from functools import lru_cache
from typing import Iterable, Pattern


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> Pattern[str]:
    """
    Translate a privacy glob into an anchored regex.

    - '**/' matches zero or more whole directories
    - '**'  matches anything, '/' included
    - '*'   matches within a single path segment
    - '?'   matches one character within a segment
    """
    pattern = pattern.replace("\\", "/")
    out = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def normalize_relative_path(relative_path: str) -> str:
    path = (relative_path or "").replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def is_excluded(relative_path: str, patterns: Iterable[str]) -> bool:
    path = normalize_relative_path(relative_path)
    for pattern in patterns or ():
        if not pattern:
            continue
        if compile_glob(pattern).match(path):
            return True
    return False
