from datetime import datetime, timezone

import pytest
from flask import Flask, request

from backend.timeutils import current_month_year, is_past_month, month_year_from_request, parse_datetime

# 2024-12-31 16:30 UTC is already January 1st in Seoul
NEW_YEAR_EDGE = datetime(2024, 12, 31, 16, 30, tzinfo=timezone.utc)


def test_month_depends_on_timezone():
    assert current_month_year('UTC', now=NEW_YEAR_EDGE) == (12, 2024)
    assert current_month_year('Asia/Seoul', now=NEW_YEAR_EDGE) == (1, 2025)
    assert current_month_year('America/New_York', now=NEW_YEAR_EDGE) == (12, 2024)


def test_unknown_timezone_falls_back_to_utc():
    assert current_month_year('Mars/Olympus_Mons', now=NEW_YEAR_EDGE) == (12, 2024)


def test_request_header_is_used():
    app = Flask(__name__)
    with app.test_request_context(headers={'X-Timezone': 'Asia/Seoul'}):
        assert month_year_from_request(request, now=NEW_YEAR_EDGE) == (1, 2025)
    with app.test_request_context(headers={'X-Timezone': 'garbage'}):
        assert month_year_from_request(request, now=NEW_YEAR_EDGE) == (12, 2024)


def test_is_past_month():
    assert is_past_month(2024, 12, 2025, 1)
    assert is_past_month(2025, 2, 2025, 3)
    assert not is_past_month(2025, 3, 2025, 3)
    assert not is_past_month(2025, 4, 2025, 3)


@pytest.mark.parametrize('value, expected', [
    ('2025-03-01T10:00:00Z', datetime(2025, 3, 1, 10, tzinfo=timezone.utc)),
    ('2025-03-01T10:00:00', datetime(2025, 3, 1, 10, tzinfo=timezone.utc)),
    ('', None),
    (None, None),
])
def test_parse_datetime(value, expected):
    assert parse_datetime(value) == expected


def test_parse_datetime_rejects_garbage():
    with pytest.raises(ValueError):
        parse_datetime('next tuesday')
