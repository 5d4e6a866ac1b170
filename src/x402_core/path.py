import fnmatch
import re
from typing import List, Union


def path_is_match(path: Union[str, List[str]], request_path: str) -> bool:
    """
    Check if request path matches the specified path pattern(s).

    Supports:
    - Exact matching: "/api/users"
    - Glob patterns: "/api/users/*", "/api/*/profile"
    - Regex patterns (prefix with 'regex:'): "regex:^/api/users/\\d+$"
    - List of any of the above

    Args:
        path: Path pattern(s) to match against. Can be a string or list of strings.
        request_path: Actual request path to check.

    Returns:
        bool: True if the request path matches any of the patterns, False otherwise.
    """

    def single_path_match(pattern: str) -> bool:
        if pattern.startswith("regex:"):
            return re.match(pattern[len("regex:") :], request_path) is not None

        if "*" in pattern or "?" in pattern or "[" in pattern:
            return fnmatch.fnmatchcase(request_path, pattern)

        return pattern == request_path

    if isinstance(path, str):
        return single_path_match(path)
    elif isinstance(path, list):
        return any(single_path_match(p) for p in path)

    return False
