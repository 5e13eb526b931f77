from sqlalchemy import Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Game(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="")
    purchase_price: Mapped[str] = mapped_column(String, default="")
    purchase_date: Mapped[str] = mapped_column(String, default="")
    purchase_where: Mapped[str] = mapped_column(String, default="")
    language: Mapped[str] = mapped_column(String, default="")
    url_bgg: Mapped[str] = mapped_column(String, default="")
    url_ludopedia: Mapped[str] = mapped_column(String, default="")
    tags: Mapped[str] = mapped_column(String, default="")  # comma joined

    @property
    def tag_list(self) -> list[str]:
        return [t.strip() for t in self.tags.split(",") if t.strip()] if self.tags else []


class PayloadCache(Base):
    __tablename__ = "payload_cache"

    # Composite Primary Key: provider + game
    provider: Mapped[str] = mapped_column(String, primary_key=True)  # "bgg" or "ludo"
    game_id: Mapped[str] = mapped_column(String, primary_key=True)

    provider_ref: Mapped[str] = mapped_column(String)  # bgg id or ludopedia slug
    payload: Mapped[str] = mapped_column(Text)
    fetched_at: Mapped[float] = mapped_column(Float)
    expires_at: Mapped[float] = mapped_column(Float, index=True)
