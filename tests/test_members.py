import pytest

from stoat.errors import Conflict, Forbidden, InvalidArgument, NotFound
from stoat.membership import add_member, get_membership
from stoat.resources import members, servers


async def setup(repo, make_user):
    owner = await make_user("owner")
    admin = await make_user("admin")
    alice = await make_user("alice")
    bob = await make_user("bob")
    server = await servers.create_server(repo, owner, "Test")
    sid = server.server_id
    async with repo.reading() as db:
        await add_member(db, sid, admin, ["admin"])
        await add_member(db, sid, alice)
        await add_member(db, sid, bob)
        await db.commit()
    return sid, owner, admin, alice, bob


async def test_leave(repo, make_user, recorder):
    sid, owner, admin, alice, bob = await setup(repo, make_user)
    left = await members.leave_server(repo, alice, sid)
    assert left.user_id == alice
    async with repo.reading() as db:
        assert await get_membership(db, sid, alice) is None
    await repo.bus.drain()
    assert recorder.kinds()[-1] == ("member", "deleted")


async def test_owner_cannot_leave(repo, make_user):
    sid, owner, *_ = await setup(repo, make_user)
    with pytest.raises(Conflict):
        await members.leave_server(repo, owner, sid)


async def test_non_member_leave_not_found(repo, make_user):
    sid, *_ = await setup(repo, make_user)
    outsider = await make_user("outsider")
    with pytest.raises(NotFound):
        await members.leave_server(repo, outsider, sid)


async def test_kick_rules(repo, make_user):
    sid, owner, admin, alice, bob = await setup(repo, make_user)

    with pytest.raises(Forbidden):
        await members.kick_member(repo, alice, sid, bob)
    with pytest.raises(Conflict):
        await members.kick_member(repo, admin, sid, owner)
    with pytest.raises(InvalidArgument):
        await members.kick_member(repo, admin, sid, admin)

    kicked = await members.kick_member(repo, admin, sid, bob)
    assert kicked.user_id == bob
    with pytest.raises(NotFound):
        await members.kick_member(repo, admin, sid, bob)

    # Only the owner removes an admin
    await members.set_member_roles(repo, owner, sid, alice, ["admin"])
    with pytest.raises(Forbidden):
        await members.kick_member(repo, admin, sid, alice)
    await members.kick_member(repo, owner, sid, alice)


async def test_set_roles(repo, make_user, recorder):
    sid, owner, admin, alice, bob = await setup(repo, make_user)
    updated = await members.set_member_roles(repo, owner, sid, alice, ["Admin", "admin", "vip"])
    assert updated.roles == ["admin", "vip"]

    with pytest.raises(Forbidden):
        await members.set_member_roles(repo, admin, sid, bob, ["admin"])
    with pytest.raises(InvalidArgument):
        await members.set_member_roles(repo, owner, sid, bob, ["owner"])
    with pytest.raises(InvalidArgument):
        await members.set_member_roles(repo, owner, sid, bob, [""])
    with pytest.raises(Conflict):
        await members.set_member_roles(repo, owner, sid, owner, ["admin"])

    await repo.bus.drain()
    assert ("member", "updated") in recorder.kinds()


async def test_list_members_pages(repo, make_user):
    sid, owner, admin, alice, bob = await setup(repo, make_user)
    page, cursor = await members.list_members(repo, alice, sid, limit=2)
    assert len(page) == 2
    assert cursor == str(page[-1].user_id)
    rest, cursor = await members.list_members(repo, alice, sid, after=int(cursor), limit=2)
    assert len(rest) == 2
    tail, cursor = await members.list_members(repo, alice, sid, after=int(cursor), limit=2)
    assert tail == []
    assert cursor is None
    assert {m.user_id for m in page + rest} == {owner, admin, alice, bob}


async def test_transfer_ownership(repo, make_user):
    sid, owner, admin, alice, bob = await setup(repo, make_user)
    with pytest.raises(Forbidden):
        await servers.transfer_ownership(repo, admin, sid, alice)
    outsider = await make_user("outsider")
    with pytest.raises(NotFound):
        await servers.transfer_ownership(repo, owner, sid, outsider)

    server = await servers.transfer_ownership(repo, owner, sid, alice)
    assert server.owner_id == alice
    async with repo.reading() as db:
        assert "owner" in (await get_membership(db, sid, alice)).roles
        assert "owner" not in (await get_membership(db, sid, owner)).roles

    # The previous owner is now a plain member and may leave
    await members.leave_server(repo, owner, sid)
    with pytest.raises(Conflict):
        await members.leave_server(repo, alice, sid)
