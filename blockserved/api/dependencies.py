"""FastAPI dependency injection providers.

Every external resource the API layer needs is accessed through a
Depends() callable defined here. The session factory is resolved from
app.state, which the lifespan populates at startup.
"""

from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from blockserved.core.config import Settings
from blockserved.core.exceptions import WalletAuthError
from blockserved.db.repositories import ActivityRepo, NoticeRepo
from blockserved.services.chain.address import validate_address


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton."""
    return Settings()


def get_settings_from_app(request: Request) -> Settings:
    """Retrieve settings stored on the running app instance.

    Preferred over the cached version inside route handlers since
    it respects the settings the app was actually started with.
    """
    settings: Settings = request.app.state.settings
    return settings


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async DB session scoped to the request lifecycle.

    Commits on success, rolls back on exception, always closes.
    """
    factory = request.app.state.session_factory
    session: AsyncSession = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def get_notice_repo(
    session: AsyncSession = Depends(get_db_session),
) -> NoticeRepo:
    return NoticeRepo(session)


def get_activity_repo(
    session: AsyncSession = Depends(get_db_session),
) -> ActivityRepo:
    return ActivityRepo(session)


def get_optional_wallet(
    x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
) -> str | None:
    """Wallet from the X-Wallet-Address header, validated when present."""
    if not x_wallet_address:
        return None
    return validate_address(x_wallet_address.strip())


def get_wallet_address(
    wallet: str | None = Depends(get_optional_wallet),
) -> str:
    """Require the X-Wallet-Address header.

    The header is trusted as-is; no signed-message challenge is checked.
    """
    if wallet is None:
        raise WalletAuthError("X-Wallet-Address header is required")
    return wallet


def client_ip(request: Request) -> str | None:
    """Caller IP, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
