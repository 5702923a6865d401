"""Settings validation and derived properties."""

import pytest

from atelier.platform.config import Settings


def test_retry_attempts_must_be_positive():
    with pytest.raises(ValueError):
        Settings(RETRY_MAX_ATTEMPTS=0)


def test_daily_dislike_limit_must_not_be_negative():
    with pytest.raises(ValueError):
        Settings(DAILY_DISLIKE_LIMIT=-1)
    assert Settings(DAILY_DISLIKE_LIMIT=0).DAILY_DISLIKE_LIMIT == 0


def test_storage_uses_s3_only_with_both_keys():
    assert Settings(AWS_ACCESS_KEY_ID="AKIA", AWS_SECRET_ACCESS_KEY="secret").storage_uses_s3 is True
    assert Settings(AWS_ACCESS_KEY_ID="AKIA", AWS_SECRET_ACCESS_KEY="").storage_uses_s3 is False
