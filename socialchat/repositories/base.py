from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """Holds the session shared by every repository in one unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session
