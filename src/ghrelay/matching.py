import re
import typing

from ghrelay.policy import Policy


class UrlMatcher:
    """Allow-list check shared by the dispatcher and every redirect hop.

    Patterns are compiled once; the matcher holds no per-request state and
    can be shared between concurrent requests.
    """

    def __init__(self, policy: Policy):
        self.policy = policy
        self.patterns: typing.Tuple[re.Pattern, ...] = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in policy.patterns
        )
        self.whitelist: typing.Tuple[str, ...] = tuple(policy.whitelist)

    def matches(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.patterns)

    def allows(self, path: str) -> bool:
        if not self.whitelist:
            return True
        return any(entry in path for entry in self.whitelist)
