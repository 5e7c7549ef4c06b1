from typing import Optional

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# All timestamps are unix ms. Ids are snowflakes (see stoat.ids).


# --- Users & auth ---


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    presence: Mapped[str] = mapped_column(String(20), server_default="offline")
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[int] = mapped_column(BigInteger)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token: Mapped[str] = mapped_column(String(255), unique=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    expires_at: Mapped[int] = mapped_column(BigInteger, index=True)


class Config(Base):
    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)


# --- Servers ---


class Server(Base):
    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger)


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        Index("ix_members_user_id", "user_id"),
    )

    server_id: Mapped[int] = mapped_column(ForeignKey("servers.id"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    roles: Mapped[list[str]] = mapped_column(JSON, default=list)
    joined_at: Mapped[int] = mapped_column(BigInteger)


class Channel(Base):
    __tablename__ = "channels"
    __table_args__ = (
        Index("ix_channels_server_position", "server_id", "position"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    server_id: Mapped[int] = mapped_column(ForeignKey("servers.id"))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), server_default="text")  # text, voice
    position: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[int] = mapped_column(BigInteger)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_channel_id_id", "channel_id", "id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)  # snowflake
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id"))
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger)
    edited_at: Mapped[Optional[int]] = mapped_column(BigInteger)


class Invite(Base):
    __tablename__ = "invites"
    __table_args__ = (
        UniqueConstraint("code", name="uq_invites_code"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(50))
    server_id: Mapped[int] = mapped_column(ForeignKey("servers.id"), index=True)
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    uses: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    max_uses: Mapped[Optional[int]] = mapped_column(Integer)
    expires_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[int] = mapped_column(BigInteger)
