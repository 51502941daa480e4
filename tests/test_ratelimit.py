import pytest
from coreason_workspace.exceptions import RateLimited
from coreason_workspace.ratelimit import MUTATING_OPERATIONS, RateLimiter, RateLimiters


def test_consume_within_quota() -> None:
    limiter = RateLimiter("saveFile", "3/minute")
    for _ in range(3):
        limiter.consume("user-1")


def test_consume_over_quota_raises() -> None:
    limiter = RateLimiter("createFile", "1/minute")
    limiter.consume("user-1")
    with pytest.raises(RateLimited, match="createFile"):
        limiter.consume("user-1")


def test_quota_is_per_user() -> None:
    limiter = RateLimiter("createFile", "1/minute")
    limiter.consume("user-1")
    limiter.consume("user-2")
    with pytest.raises(RateLimited):
        limiter.consume("user-1")


def test_cost_counts_against_quota() -> None:
    limiter = RateLimiter("saveFile", "2/minute")
    limiter.consume("user-1", cost=2)
    with pytest.raises(RateLimited):
        limiter.consume("user-1")


def test_reset_restores_quota() -> None:
    limiter = RateLimiter("deleteFile", "1/minute")
    limiter.consume("user-1")
    limiter.reset("user-1")
    limiter.consume("user-1")


def test_limiters_are_independent_per_kind() -> None:
    limiters = RateLimiters({kind: "1/minute" for kind in MUTATING_OPERATIONS})
    limiters.consume("createFile", "user-1")
    limiters.consume("createFolder", "user-1")
    with pytest.raises(RateLimited):
        limiters.consume("createFile", "user-1")
    assert limiters["saveFile"].kind == "saveFile"


def test_limiters_require_every_mutating_kind() -> None:
    with pytest.raises(ValueError, match="saveFile"):
        RateLimiters({kind: "1/minute" for kind in MUTATING_OPERATIONS if kind != "saveFile"})
