"""Path prefix helpers shared by the pipeline stages."""


def path_matches(path: str, prefix: str) -> bool:
    """
    True if `path` is `prefix` itself or lies underneath it.

    Segment-aware: "/api" matches "/api" and "/api/notes" but not "/apix".
    """
    if prefix in ("", "/"):
        return True
    if not path.startswith(prefix):
        return False
    return len(path) == len(prefix) or path[len(prefix)] == "/"


def strip_prefix(path: str, prefix: str) -> str:
    """Remainder of `path` below `prefix`, always starting with "/"."""
    if prefix in ("", "/"):
        return path or "/"
    return path[len(prefix):] or "/"
