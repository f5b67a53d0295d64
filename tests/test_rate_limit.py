import pytest

from app.dependencies.rate_limit import SlidingWindowLimiter
from app.utils.errors import TooManyRequests


def test_window_blocks_then_slides():
    now = [100.0]
    limiter = SlidingWindowLimiter(limit=2, period_seconds=60, clock=lambda: now[0])

    limiter.hit("1.2.3.4:/queue/join")
    now[0] += 10
    limiter.hit("1.2.3.4:/queue/join")

    with pytest.raises(TooManyRequests) as exc:
        limiter.hit("1.2.3.4:/queue/join")
    assert exc.value.status_code == 429
    assert exc.value.extra["retry_after"] == 50

    # Separate key, separate window
    limiter.hit("5.6.7.8:/queue/join")

    now[0] += 51
    limiter.hit("1.2.3.4:/queue/join")


@pytest.mark.asyncio
async def test_limited_endpoint_sets_retry_after(async_client, make_doctor, make_user, monkeypatch):
    from app.core.config import settings
    from app.dependencies import rate_limit
    from helpers import auth_headers

    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(rate_limit, "limiter", SlidingWindowLimiter(limit=1, period_seconds=60))

    doctor = make_doctor()
    headers = auth_headers(make_user("patient"))
    await async_client.post("/queue/join", json={"doctor_id": doctor.id}, headers=headers)
    response = await async_client.post("/queue/join", json={"doctor_id": doctor.id}, headers=headers)

    assert response.status_code == 429
    assert response.json()["detail"]["code"] == "too_many_requests"
    assert int(response.headers["Retry-After"]) >= 1
