import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from helparo.api import create_app
from helparo.broadcast import clear_accept_locks
from helparo.database import get_db, load_sample_data
from helparo.models import CallerContext
from samples import CUSTOMER_ID


@pytest_asyncio.fixture
async def client():
    """
    Async client talking to the API in-process.
    """
    app = create_app()
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh store, procedure registry, rate limits and locks for every test."""
    import helparo.database
    import helparo.rate_limit
    import helparo.rpc

    clear_accept_locks()
    helparo.rate_limit._rate_limiter = None
    helparo.rpc._procedures = None
    helparo.database._db = None
    load_sample_data(get_db())
    yield


@pytest.fixture
def admin() -> CallerContext:
    return CallerContext(user_id="admin-1", is_admin=True)


@pytest.fixture
def customer() -> CallerContext:
    return CallerContext(user_id=CUSTOMER_ID)


@pytest.fixture
def anonymous() -> CallerContext:
    return CallerContext()
